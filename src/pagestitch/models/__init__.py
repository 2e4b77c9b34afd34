"""Domain models for page analysis, capture strategies and results."""
