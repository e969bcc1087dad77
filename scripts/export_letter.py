import argparse
import logging
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "backend"))

from refund_agents.core.config import get_settings
from refund_agents.services.drafter import letter_filename
from refund_agents.storage.local_store import LocalStore, RecordNotFoundError

logger = logging.getLogger("export_letter")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List saved refund cases or export a generated appeal letter.")
    parser.add_argument("--database", default=None, help="Path to the SQLite database (defaults to DATABASE_PATH).")
    parser.add_argument("--case-id", default=None, help="Case to export; omit to list saved cases.")
    parser.add_argument("--out", default=".", help="Directory to write the letter into.")
    return parser.parse_args()


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args()
    database = Path(args.database) if args.database else get_settings().database_path
    store = LocalStore(database)

    if not args.case_id:
        for case in store.list_cases():
            merchant = case.extracted_data.merchant_name if case.extracted_data else "-"
            status = "letter" if case.generated_letter else "draft"
            print(f"{case.id}\t{case.created_at}\t{status}\t{merchant}")
        return 0

    try:
        case = store.get_case(args.case_id)
    except RecordNotFoundError:
        logger.error("Case %s not found in %s", args.case_id, database)
        return 1
    if not case.generated_letter:
        logger.error("Case %s has no generated letter", args.case_id)
        return 1

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / letter_filename(case)
    target.write_text(case.generated_letter, encoding="utf-8")
    logger.info("Wrote %s", target)
    return 0


if __name__ == "__main__":
    sys.exit(main())
