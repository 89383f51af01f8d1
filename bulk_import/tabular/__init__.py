"""File reading: tokenizer and header row detection."""
