import argparse
import asyncio
import json
import sys

from pydantic import ValidationError

from graphdash.graph.executor import run_query
from graphdash.graph.neo4j_client import close_driver
from graphdash.querybuilder.codec import InvalidToken, decode, encode
from graphdash.querybuilder.compiler import compile_query
from graphdash.querybuilder.decompiler import NotRepresentable, decompile
from graphdash.querybuilder.models import ModelValidationError, QueryModel

EXIT_REJECTED = 2


def _read_arg(value: str) -> str:
    """`-` reads stdin, anything else is taken literally."""
    return sys.stdin.read() if value == "-" else value


def _load_model(path: str) -> QueryModel:
    if path == "-":
        return QueryModel.model_validate_json(sys.stdin.read())
    with open(path, "r", encoding="utf-8") as f:
        return QueryModel.model_validate_json(f.read())


def _dump(model: QueryModel) -> str:
    return json.dumps(model.model_dump(mode="json", by_alias=True), indent=2)


async def _execute(text: str) -> dict:
    try:
        result = await run_query(text)
    finally:
        await close_driver()
    return result.model_dump(mode="json")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="graphdash",
        description="Translate between query builder models, share tokens and Cypher.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("compile", help="Compile a model JSON file to Cypher.")
    p.add_argument("model", help="Path to model JSON, or - for stdin.")

    p = sub.add_parser("decompile", help="Recover a model from Cypher text.")
    p.add_argument("query", help="Cypher text, or - for stdin.")

    p = sub.add_parser("encode", help="Encode a model JSON file as a share token.")
    p.add_argument("model", help="Path to model JSON, or - for stdin.")

    p = sub.add_parser("decode", help="Decode a share token into model JSON.")
    p.add_argument("token", help="Share token, or - for stdin.")
    p.add_argument("--cypher", action="store_true", help="Print the compiled Cypher instead of the model.")

    p = sub.add_parser("run", help="Execute Cypher against the configured Neo4j database.")
    p.add_argument("query", help="Cypher text, or - for stdin.")

    args = parser.parse_args(argv)

    try:
        if args.command == "compile":
            print(compile_query(_load_model(args.model)))
        elif args.command == "decompile":
            print(_dump(decompile(_read_arg(args.query))))
        elif args.command == "encode":
            print(encode(_load_model(args.model)))
        elif args.command == "decode":
            model = decode(_read_arg(args.token).strip())
            print(compile_query(model) if args.cypher else _dump(model))
        elif args.command == "run":
            result = asyncio.run(_execute(_read_arg(args.query)))
            print(json.dumps(result, indent=2))
            return 1 if result["error"] else 0
    except (NotRepresentable, InvalidToken, ModelValidationError, ValidationError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_REJECTED
    return 0


if __name__ == "__main__":
    sys.exit(main())
