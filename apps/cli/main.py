"""`lua-llama` — chat with a local model whose replies are run as Lua.

This is the CLI entrypoint. Run from source with:
  `python -m apps.cli.main --help`
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Sequence

from apps.cli.lua_env import new_lua_env
from apps.cli.prompt_file import PromptFileError, load_system_prompt
from apps.cli.stdio_hook import StdioHook
from lua_llama.engine.chat_types import Greedy, Sampling, Temperature, TopP
from lua_llama.engine.context import ContextConfig, ContinuousContext, FullRebuildContext
from lua_llama.engine.adapters import get_adapter, list_backends
from lua_llama.engine.templates import get_template, list_templates
from lua_llama.hook_loop import HookLoop


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lua-llama", description="Local LLM chat whose replies are evaluated as Lua")
    p.add_argument("-m", "--model-path", required=True, help="Model path or HF repo id")
    p.add_argument("-p", "--prompt-path", required=True, help="TOML/JSON file with the system prompt turns")
    p.add_argument(
        "-t",
        "--model-type",
        required=True,
        choices=list_templates(),
        help="Prompt template of the model family",
    )
    p.add_argument(
        "--full-chat",
        action="store_true",
        help="Re-encode the whole conversation on every turn instead of appending to the KV cache",
    )
    p.add_argument(
        "--backend",
        default="transformers",
        choices=list_backends(),
        help="Inference backend (default: %(default)s)",
    )
    p.add_argument("--n-ctx", type=int, default=2048, help="Context window in tokens (default: %(default)s)")
    p.add_argument("--n-batch", type=int, default=512, help="Max tokens per decode call (default: %(default)s)")
    p.add_argument("--max-tokens", type=int, default=None, help="Max generated tokens per turn (default: unlimited)")
    p.add_argument("--device", type=str, default="cpu", help="Torch device / device_map (default: %(default)s)")
    p.add_argument(
        "--dtype",
        type=str,
        default=None,
        help="Torch dtype: float16|bfloat16|float32 (default: float32 on CPU, float16 otherwise)",
    )
    p.add_argument("--trust-remote-code", action="store_true", help="Allow custom modeling code from the hub")

    sampling = p.add_mutually_exclusive_group()
    sampling.add_argument("--temperature", type=float, default=None, help="Temperature sampling (default: greedy)")
    sampling.add_argument("--top-p", type=float, default=None, help="Nucleus sampling threshold (default: greedy)")
    p.add_argument("--min-keep", type=int, default=1, help="Min tokens kept by --top-p (default: %(default)s)")

    p.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for stderr diagnostics (default: %(default)s)",
    )
    return p


def _dtype_from_string(dtype: str) -> Any:
    import torch

    dt = dtype.strip().lower()
    if dt in {"fp16", "float16", "half"}:
        return torch.float16
    if dt in {"bf16", "bfloat16"}:
        return torch.bfloat16
    if dt in {"fp32", "float32"}:
        return torch.float32
    raise ValueError(f"Unknown dtype: {dtype!r}")


def _sampling_from_args(args: argparse.Namespace) -> Sampling:
    if args.temperature is not None:
        return Temperature(args.temperature)
    if args.top_p is not None:
        return TopP(args.top_p, min_keep=args.min_keep)
    return Greedy()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        system_prompt = load_system_prompt(args.prompt_path)
        template = get_template(args.model_type)
        config = ContextConfig(n_ctx=args.n_ctx, n_batch=args.n_batch, max_tokens=args.max_tokens)
        sampling = _sampling_from_args(args)

        load_kwargs: dict[str, Any] = {"device": args.device, "trust_remote_code": args.trust_remote_code}
        if args.dtype:
            load_kwargs["dtype"] = _dtype_from_string(args.dtype)

        adapter = get_adapter(args.backend)
        adapter.load(args.model_path, **load_kwargs)
    except (PromptFileError, ValueError, OSError, RuntimeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.full_chat:
        ctx = FullRebuildContext(adapter, template, system_prompt, config)
    else:
        ctx = ContinuousContext(adapter, template, system_prompt, config)

    loop = HookLoop(ctx, new_lua_env(), StdioHook(), sampling=sampling)
    try:
        loop.run()
    except KeyboardInterrupt:
        print("", file=sys.stderr)
        return 130
    finally:
        adapter.unload()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
