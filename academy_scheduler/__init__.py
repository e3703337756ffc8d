"""Class scheduling and content-gap engine for the academy backend."""
