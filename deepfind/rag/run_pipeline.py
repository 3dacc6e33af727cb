# deepfind/rag/run_pipeline.py
from __future__ import annotations

import argparse
import json

from deepfind.rag.errors import ConfigurationError, EngineError, SearchError
from deepfind.rag.pipeline import answer
from deepfind.utils.logging import setup_logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ask a question over an indexed folder")
    parser.add_argument("question", type=str, help="Question to ask")
    parser.add_argument("--index", type=str, required=True, help="Index name to search")
    args = parser.parse_args(argv)

    setup_logging()

    try:
        res = answer(args.question, args.index)
    except SearchError as e:
        print(json.dumps({"ok": False, "reason": e.reason, "error": str(e)}, ensure_ascii=False, indent=2))
        return 1
    except (ConfigurationError, EngineError) as e:
        print(f"ERROR: {type(e).__name__}: {e}")
        return 2

    print(json.dumps(res.model_dump(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
