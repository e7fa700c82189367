#!/usr/bin/env python3
"""Clinician Assistant CLI."""

import argparse
import json
import logging
import sys
import uuid

from config.settings import Settings
from orchestrator import ClinicianAssistant


def chat(assistant: ClinicianAssistant, conversation_id: str):
    """Interactive chat loop; blank line or 'exit' quits."""
    print(f"Conversation {conversation_id}. Type 'exit' to quit.\n")
    while True:
        try:
            text = input("You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not text or text.lower() in ("exit", "quit"):
            break
        reply = assistant.submit_message(conversation_id, text)
        print(f"\nAssistant: {reply.content}\n")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Clinician Assistant - answers questions about patients, goals, budgets and sessions"
    )
    parser.add_argument(
        "--question",
        "-q",
        type=str,
        help="Question to answer (starts interactive chat when omitted)"
    )
    parser.add_argument(
        "--conversation",
        "-c",
        type=str,
        help="Conversation ID to continue (a new one is created when omitted)"
    )
    parser.add_argument(
        "--fixture",
        type=str,
        help="Directory of practice CSV files (default: data/sample_practice)"
    )
    parser.add_argument(
        "--db-path",
        type=str,
        help="SQLite database for conversation memory"
    )
    parser.add_argument(
        "--tool",
        type=str,
        help="Run a single tool directly (debug)"
    )
    parser.add_argument(
        "--input",
        type=str,
        default="{}",
        help="JSON input for --tool, e.g. '{\"patient_reference\": \"Radwan-563004\"}'"
    )
    parser.add_argument(
        "--list-tools",
        action="store_true",
        help="List registered tools and exit"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    overrides = {"verbose": args.verbose}
    if args.fixture:
        overrides["fixture_dir"] = args.fixture
    if args.db_path:
        overrides["db_path"] = args.db_path
    settings = Settings(**overrides)

    assistant = ClinicianAssistant(settings=settings)

    try:
        if args.list_tools:
            for definition in assistant.registry.get_definitions():
                function = definition["function"]
                print(f"{function['name']}: {function['description']}")
            return

        if args.tool:
            try:
                tool_input = json.loads(args.input)
            except json.JSONDecodeError as e:
                print(f"Invalid --input JSON: {e}", file=sys.stderr)
                sys.exit(2)
            try:
                print(assistant.run_tool(args.tool, tool_input))
            except KeyError:
                print(
                    f"Unknown tool '{args.tool}'. Available: {', '.join(assistant.registry.names)}",
                    file=sys.stderr
                )
                sys.exit(2)
            return

        conversation_id = args.conversation or str(uuid.uuid4())
        if args.question:
            reply = assistant.submit_message(conversation_id, args.question)
            print("\n" + reply.content + "\n")
            if args.verbose:
                print(f"(conversation {conversation_id})")
        else:
            chat(assistant, conversation_id)
    except Exception as e:
        print(f"Error processing question: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)
    finally:
        assistant.shutdown()


if __name__ == "__main__":
    main()
