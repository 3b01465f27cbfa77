"""sObject describe metadata and its cache."""
