"""Install the gallery accounts package."""

from setuptools import setup, find_packages

setup(
    name='gallery-accounts',
    version='0.1',
    packages=find_packages(exclude=['*test*']),
    package_data={'gallery': ['templates/gallery/*.html']},
    install_requires=[
        "flask",
        "werkzeug",
        "wtforms",
        "email-validator",
        "python-dateutil",
        "pytz",
        "pyjwt",
        "redis",
        "fakeredis",
        "python-json-logger",
    ],
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=False
)
