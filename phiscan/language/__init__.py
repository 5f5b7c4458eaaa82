"""Azure AI Language analyze-text integration.

Request templates, the async HTTP client, and response parsing into
categorized entities.
"""
