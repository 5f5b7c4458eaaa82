"""Cosmos DB finding-record store: record model, schema provisioning, writer."""
