import argparse
import sys

from rich.console import Console

from app_previews.config import load_settings, parse_skip_locales
from app_previews.exceptions import AppPreviewsError
from app_previews.orchestrator import Orchestrator

console = Console()


def build_parser():
    parser = argparse.ArgumentParser(
        description="Upload app previews to App Store Connect for multiple languages and devices.",
    )
    parser.add_argument("previews_path", nargs="?",
                        help="Root path where app previews are stored (default: UPLOAD_APP_PREVIEWS_PREVIEWS_PATH)")
    parser.add_argument("--skip-langs", help="Comma separated list of lang codes to skip")
    parser.add_argument("--regenerate-posters", action="store_true", default=None,
                        help="Regenerate poster images even if already present")
    parser.add_argument("--platform", help="Target platform (default: ios)")
    parser.add_argument("--scan-only", action="store_true",
                        help="Scan and generate posters without uploading")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = load_settings()

    if args.previews_path:
        settings.previews_path = args.previews_path
    if args.skip_langs is not None:
        settings.skip_locales = parse_skip_locales(args.skip_langs)
    if args.regenerate_posters:
        settings.regenerate_posters = True
    if args.platform:
        settings.platform = args.platform

    try:
        Orchestrator(settings).run(scan_only=args.scan_only)
    except AppPreviewsError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
