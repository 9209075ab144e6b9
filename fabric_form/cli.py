"""CLI entry point for the fabric data entry form."""

import argparse
import math
import sys
from datetime import date

from fabric_form import __version__


# (field name, argparse dest, label, kind)
FORM_INPUTS = [
    ("fabricType", "fabric_type", "Fabric Type", "text"),
    ("colour", "colour", "Colour", "text"),
    ("length", "length", "Length (in mtr)", "number"),
    ("width", "width", "Width", "number"),
    ("price", "price", "Price", "number"),
    ("dateOfPurchase", "date_of_purchase", "Date of Purchase (YYYY-MM-DD)", "date"),
]


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fabric-form",
        description="Fabric data entry form. Records a fabric and prints its QR code label.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fill the form interactively
  python -m fabric_form --endpoint https://api.example.com/graphql

  # Submit in one go and print the QR code
  python -m fabric_form --fabric-type Cotton --colour Blue \\
    --length 10 --width 2.5 --price 1200 --date-of-purchase 2024-01-01 --print

  # Keep a copy of the QR code image
  python -m fabric_form --fabric-type Silk --colour Red --length 3 \\
    --width 1.2 --price 950 --date-of-purchase 2024-03-15 --save-qr labels/silk.png
        """,
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    # Connection
    parser.add_argument(
        "--endpoint",
        default=None,
        help="GraphQL endpoint URL. Default: $FABRIC_GRAPHQL_URL",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Request timeout in seconds. Default: $FABRIC_GRAPHQL_TIMEOUT or 30",
    )

    # Form fields, prompted for when omitted
    parser.add_argument("--fabric-type", default=None, help="Fabric type (e.g. Cotton)")
    parser.add_argument("--colour", default=None, help="Fabric colour")
    parser.add_argument("--length", default=None, help="Length in metres")
    parser.add_argument("--width", default=None, help="Width")
    parser.add_argument("--price", default=None, help="Price")
    parser.add_argument(
        "--date-of-purchase",
        default=None,
        help="Date of purchase, YYYY-MM-DD",
    )

    # QR code handling
    parser.add_argument(
        "--print",
        dest="print_qr",
        action="store_true",
        help="Print the QR code after a successful submission without asking",
    )
    parser.add_argument(
        "--save-qr",
        default=None,
        metavar="PATH",
        help="Save the returned QR code image to PATH",
    )
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip QR code scannability verification of the saved image",
    )

    return parser


def check_input(kind: str, value: str) -> str | None:
    """Input constraints of the form fields. Returns an error message or None."""
    if not value.strip():
        return "This field is required."
    if kind == "number":
        try:
            number = float(value)
        except ValueError:
            return "Please enter a number."
        if not math.isfinite(number):
            return "Please enter a number."
        if number < 0:
            return "Value must be greater than or equal to 0."
        if abs(number * 100 - round(number * 100)) > 1e-6:
            return "Please enter a value with at most 2 decimal places."
    elif kind == "date":
        try:
            date.fromisoformat(value)
        except ValueError:
            return "Please enter a date as YYYY-MM-DD."
    return None


def prompt_field(label: str, kind: str) -> str:
    """Ask for a field until it satisfies its input constraints."""
    while True:
        value = input(f"  {label}: ").strip()
        problem = check_input(kind, value)
        if problem is None:
            return value
        print(f"    {problem}", file=sys.stderr)


def _alert(message: str) -> None:
    print(f"  {message}")


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    # Lazy imports for faster --help
    from fabric_form.api_client import get_client, Spinner
    from fabric_form.form import FabricForm

    print(f"Fabric Data Entry Form v{__version__}")
    print("=" * 50)

    try:
        client = get_client(args.endpoint, args.timeout)
    except ValueError as e:
        print(f"\n  ERROR: {e}", file=sys.stderr)
        return 1
    print(f"  Backend: {client.name()}")

    form = FabricForm(client, alert=_alert)
    spinner = Spinner("Submitting...")

    def _on_change(f: FabricForm) -> None:
        if f.loading and not spinner.running:
            spinner.start()
        elif not f.loading and spinner.running:
            spinner.stop()

    form.subscribe(_on_change)

    try:
        # Step 1: Fill the form
        print("\n[1/3] Fabric details")
        for name, dest, label, kind in FORM_INPUTS:
            value = getattr(args, dest)
            if value is None:
                value = prompt_field(label, kind)
            form.update_field(name, value)

        # Step 2: Submit
        print("\n[2/3] Submitting...")
        result = form.submit()
        if not result.ok:
            if form.error:
                print(f"  Error: {form.error}", file=sys.stderr)
            return 1
        print(f"  ✓ QR code: {form.qr_code_url}")

        if args.save_qr:
            from fabric_form.errors import ImageLoadError
            from fabric_form.image_utils import save_qr_image, verify_qr_scannable, VerifyResult

            try:
                output_path = save_qr_image(form.qr_code_url, args.save_qr)
            except (ImageLoadError, OSError, ValueError) as e:
                print(f"  ERROR saving QR code: {e}", file=sys.stderr)
            else:
                print(f"  ✓ Saved: {output_path}")
                if not args.no_verify:
                    verdict, decoded = verify_qr_scannable(output_path)
                    if verdict == VerifyResult.SCANNABLE:
                        print(f"  ✓ QR code is SCANNABLE! Decoded: {decoded}")
                    elif verdict == VerifyResult.SKIPPED:
                        print("  ⊘ Verification skipped (pyzbar not installed)")
                    else:
                        print("  ⚠️  WARNING: saved QR code could not be decoded.")

        # Step 3: Print QR Code, offered only once a QR URL exists
        if args.print_qr:
            print("\n[3/3] Printing QR code...")
            do_print = True
        else:
            answer = input("\n[3/3] Print QR Code? [y/N] ")
            do_print = answer.lower() in ("y", "yes")

        if do_print:
            if not form.print_qr_code():
                return 1
            print("  ✓ Sent to printer")

        return 0

    except (EOFError, KeyboardInterrupt):
        print("\n  Aborted.", file=sys.stderr)
        return 1

    finally:
        if spinner.running:
            spinner.stop()
        form.unmount()


if __name__ == "__main__":
    sys.exit(main())
