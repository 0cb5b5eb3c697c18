"""
CLI - Command-line interface for dealership reporting prompts.

Supports:
- Single prompt mode (SQL + rows + visualization)
- SQL-only and analysis-only modes
- JSON output
- Interactive mode
"""

import argparse
import json
import sys
from typing import Any, Dict

from dealer_query.config import get_config
from dealer_query.llm_guard import (
    LLMAvailabilityError,
    OFFLINE_FALLBACK_HELP,
    ensure_llm_available,
)
from dealer_query.prompt_analyzer import PromptAnalyzer
from dealer_query.services import QueryService, QueryServiceResult
from dealer_query.telemetry import get_logger, setup_logging


class DealerQueryCLI:
    """Command-line interface for dealership reporting prompts."""

    def __init__(self, analyze_only: bool = False):
        setup_logging()
        self.logger = get_logger()

        self.config = get_config()
        self.analyze_only = analyze_only
        self.analyzer = PromptAnalyzer()
        self.query_service = None

        if not self.analyze_only:
            ensure_llm_available("Dealer query CLI startup")
            self.query_service = QueryService(config=self.config)

        self.logger.info("DealerQueryCLI initialized successfully")

    def analyze(self, prompt: str) -> Dict[str, Any]:
        """Rule-based analysis only; no model or database call."""
        return self.analyzer.analyze(prompt).model_dump(mode="json")

    def generate_sql(self, prompt: str) -> Dict[str, Any]:
        generated = self.query_service.sql_generator.generate(prompt)
        return {
            "sql": generated.sql,
            "is_fallback": generated.is_fallback,
            "failure": generated.failure.value if generated.failure else None,
            "failure_reason": generated.failure_reason,
        }

    def process_prompt(self, prompt: str) -> QueryServiceResult:
        return self.query_service.run(prompt, channel="cli")

    def run_interactive(self, debug_mode: bool = False):
        """Run interactive REPL mode for asking multiple questions."""
        print("\n" + "=" * 70)
        print("Dealer Query - Sales, Inventory and Warranty Reporting")
        print("=" * 70)
        print("\nExamples:")
        print("  - Show total gross by dealership for October 2025")
        print("  - How many deals did we count this month?")
        print("  - Warranty revenue by month this year as a line chart")
        print("\nCommands:")
        print("  - 'exit' or 'quit': Exit the application")
        print("  - 'debug on/off': Toggle debug mode")
        print("=" * 70 + "\n")

        prompt_count = 0

        while True:
            try:
                prompt = input("Ask: ").strip()
                if not prompt:
                    continue

                if prompt.lower() in ["exit", "quit", "q"]:
                    print("\nGoodbye.\n")
                    break

                if prompt.lower().startswith("debug"):
                    if "on" in prompt.lower():
                        debug_mode = True
                    elif "off" in prompt.lower():
                        debug_mode = False
                    print(f"Debug mode is {'ON' if debug_mode else 'OFF'}\n")
                    continue

                if self.analyze_only:
                    print(json.dumps(self.analyze(prompt), indent=2))
                    prompt_count += 1
                    continue

                result = self.process_prompt(prompt)
                prompt_count += 1
                _print_result(result, debug_mode)

            except KeyboardInterrupt:
                print("\n\nInterrupted. Goodbye!\n")
                break
            except LLMAvailabilityError:
                print(f"\n{OFFLINE_FALLBACK_HELP}\n")
                break
            except Exception as e:
                self.logger.error(f"Error in interactive mode: {e}", exc_info=True)
                print(f"\nUnexpected error: {e}\n")

        if prompt_count > 0:
            print(f"Session summary: processed {prompt_count} prompts")


def _print_result(result: QueryServiceResult, debug_mode: bool):
    if result.sql:
        print(f"\nSQL: {result.sql}")
    if not result.success:
        print(f"Error: {result.error}\n")
        return

    print(f"Visualization: {result.visualization}")
    if result.query_result is not None and result.query_result.row_count:
        print(result.query_result.data.to_string(index=False, max_rows=50))
    else:
        print("(no rows)")

    if debug_mode and result.context is not None:
        print("\nComponent timings:")
        for component, timing in result.context.component_timings.items():
            print(f"  - {component}: {timing:.4f}s")
    print()


def _dump(payload: Dict[str, Any], pretty: bool):
    print(json.dumps(payload, indent=2 if pretty else None, default=str))


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Dealer Query CLI - ask reporting questions in plain English",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Interactive mode
  python -m dealer_query.cli --interactive

  # Single prompt
  python -m dealer_query.cli "Show total gross by dealership for October 2025"

  # Generated SQL only (no database)
  python -m dealer_query.cli "count deals this month" --sql-only

  # Rule-based analysis only (no model, no database)
  python -m dealer_query.cli "count deals this month" --analyze-only --json --pretty
        """,
    )
    parser.add_argument(
        "prompt",
        type=str,
        nargs="?",
        help="Natural language prompt (omit for interactive mode)",
    )
    parser.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Run in interactive mode (ask multiple questions)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show component timings",
    )
    parser.add_argument(
        "--json", action="store_true", help="Output in JSON format (single-shot mode)"
    )
    parser.add_argument(
        "--pretty", action="store_true", help="Pretty-print JSON output"
    )
    parser.add_argument(
        "--sql-only",
        action="store_true",
        help="Generate and validate SQL without executing it",
    )
    parser.add_argument(
        "--analyze-only",
        action="store_true",
        help="Show rule-based prompt analysis without calling the model",
    )

    args = parser.parse_args()

    try:
        cli = DealerQueryCLI(analyze_only=args.analyze_only)
    except LLMAvailabilityError:
        print(f"\n{OFFLINE_FALLBACK_HELP}\n")
        sys.exit(2)

    try:
        if args.interactive or not args.prompt:
            cli.run_interactive(debug_mode=args.debug)
            sys.exit(0)

        if args.analyze_only:
            _dump(cli.analyze(args.prompt), pretty=args.pretty or not args.json)
            sys.exit(0)

        if args.sql_only:
            generated = cli.generate_sql(args.prompt)
            if args.json:
                _dump(generated, args.pretty)
            else:
                print(generated["sql"])
            sys.exit(0 if generated["failure"] is None else 1)

        result = cli.process_prompt(args.prompt)
        if args.json:
            payload = result.to_payload()
            if args.debug and result.context is not None:
                payload["component_timings"] = result.context.component_timings
            _dump(payload, args.pretty)
        else:
            _print_result(result, args.debug)

        sys.exit(0 if result.success else 1)

    except LLMAvailabilityError:
        print(f"\n{OFFLINE_FALLBACK_HELP}\n")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
