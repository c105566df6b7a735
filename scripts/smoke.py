# scripts/smoke.py
"""
Smoke run for restorekit against a throwaway working tree.

Usage
-----
1. Run in a fresh temporary directory (deleted afterwards):
    $ uv run python scripts/smoke.py

2. Keep the tree and store for inspection:
    $ uv run python scripts/smoke.py --keep
"""

import argparse
import asyncio
import logging
import shutil
import sys
import tempfile
import traceback
from pathlib import Path

from dotenv import load_dotenv

from restorekit.commands.builtin import register_builtin_executors
from restorekit.commands.manager import CommandManager
from restorekit.core.errors import BatchError
from restorekit.restore.manager import RestorePointManager

# --------------------------------------------------------------------------- #
# Environment Setup
# --------------------------------------------------------------------------- #
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

# --------------------------------------------------------------------------- #
# Test Data
# --------------------------------------------------------------------------- #
FILES = {
    "README.md": "# smoke\n",
    "src/main.py": "print('v1')\n",
    "docs/notes.txt": "first draft\n",
}


async def run(root: Path) -> None:
    """Execute the smoke workflow inside ``root``."""
    for rel, text in FILES.items():
        (root / rel).parent.mkdir(parents=True, exist_ok=True)
        (root / rel).write_text(text, encoding="utf-8")

    restore_points = RestorePointManager(root, auto_cleanup=False)
    commands = CommandManager(restore_points)
    register_builtin_executors(commands.registry)

    # 1. Baseline snapshot
    s0 = await restore_points.create_restore_point(description="baseline")
    print(f"\n📸 Snapshot {s0.id} ({s0.file_count} files)")

    # 2. A few undoable commands
    await commands.execute_command(
        "write-file", {"path": "src/main.py", "content": "print('v2')\n"}, create_restore_point=True
    )
    await commands.execute_command("rename", {"from": "docs/notes.txt", "to": "docs/final.txt"})
    print(f"📝 Commands executed: {len(commands.get_history())}")

    await commands.undo()
    print("↩  Undid rename:", (root / "docs/notes.txt").exists())

    # 3. A batch that fails half-way
    try:
        await commands.execute_batch(
            [
                {"type": "write-file", "params": {"path": "tmp.txt", "content": "x"}},
                {"type": "delete-file", "params": {"path": "missing.txt"}},
            ]
        )
    except BatchError as exc:
        print(f"🧯 Batch rolled back: {exc}")

    # 4. Jump back to the baseline
    report = await commands.rollback_to_restore_point(s0.id)
    print(f"⏪ Restored {report.restored_to_point}; checksum ok: "
          f"{restore_points.current_checksum() == s0.checksum}")

    # 5. Stats
    rp = restore_points.get_statistics()
    cs = commands.get_statistics()
    print("\n" + "=" * 60)
    print(f"Restore points: {rp.total_restore_points} ({rp.snapshots} snapshots, {rp.deltas} deltas)")
    print(f"Commands: {cs.total_commands} ({cs.completed_commands} completed, "
          f"{cs.undone_commands} undone, {cs.failed_commands} failed)")
    print("=" * 60)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the restorekit smoke test")
    parser.add_argument("--keep", action="store_true", help="Keep the temporary tree")
    args = parser.parse_args()

    root = Path(tempfile.mkdtemp(prefix="restorekit-smoke-"))
    print(f"📂 Working tree: {root}")
    try:
        asyncio.run(run(root))
    except Exception as exc:
        print(f"\n❌ Smoke run crashed: {exc}")
        traceback.print_exc()
    finally:
        if not args.keep:
            shutil.rmtree(root, ignore_errors=True)


if __name__ == "__main__":
    main()
