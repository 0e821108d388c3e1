"""Remote fetchers and mutators, one module per AWS service (or local system facility)."""
