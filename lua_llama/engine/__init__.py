# Model-agnostic chat engine
#
# This package turns a multi-turn conversation into engine input and
# streams the engine's reply back, independent of the model family.
#
# Key components:
#   - adapters/     Inference backends (model, tokenizer, KV cache) and
#                   the backend-name lookup (get_adapter)
#   - templates.py  Per-family turn framing and stop detection
#   - context.py    Continuous / full-rebuild chat contexts
#   - stream.py     Token-by-token decode stream
