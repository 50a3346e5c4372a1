"""Routes for the gallery accounts application."""
