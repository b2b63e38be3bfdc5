"""Data models for PairTalk."""
