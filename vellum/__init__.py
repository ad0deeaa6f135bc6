"""
Vellum: protect, compress and time-lock single files.

Features:

- Extended Hamming (SECDED) protection with six strength levels, optional
  single-bit correction on unlock and deliberate fault injection for testing.
- Lossless compression (deflate, optional zstd) in a self-describing container.
- Time-gated envelopes: XChaCha20-Poly1305 with an Argon2id key derived from the
  unlock instant; files that are not restricted still get an envelope.
- A pipeline orchestrator that applies the combination selected by an operation
  mode, in mirror order for the inverse modes, and writes its output atomically.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "settings",
    "pipeline",
    "extension",
    "hamming",
    "codec",
    "timelock",
]

# Programmatic API: build a vellum.settings.RunSettings and pass it to
# vellum.pipeline.Pipeline().run(...) (or .attempt(...) for a result object).
