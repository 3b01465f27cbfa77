"""Salesforce API clients and the Database protocol."""
