"""servectl: command line interface for LocalServe."""
