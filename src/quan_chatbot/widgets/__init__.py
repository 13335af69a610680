"""Textual widgets rendering the conversation transcript."""
