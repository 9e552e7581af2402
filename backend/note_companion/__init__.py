"""Note Companion upload-processing pipeline."""
