"""Entry point: python -m mnemo [command]

- stats                 Show memory counts by type and project
- decay                 Run the relevance decay pass
- archive [DAYS]        Archive old, rarely used, low-relevance memories
- consolidate [TYPE]    Merge near-duplicate memories (optionally one type)
- reindex               Rebuild the index from the memory files
- export [PATH]         Write every memory to a JSON backup file
- import PATH           Re-create memories from a JSON backup file
- serve                 Run the maintenance scheduler until interrupted
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

from mnemo.config import MnemoConfig, load_config
from mnemo.memory import backup
from mnemo.memory.models import ConsolidationScope
from mnemo.memory.store import MemoryStore

USAGE = """\
Usage: python -m mnemo [stats|decay|archive [DAYS]|consolidate [TYPE]|reindex|export [PATH]|import PATH|serve]
  stats        Memory counts by type and project
  decay        Decay relevance scores
  archive      Archive old low-value memories (default: configured days)
  consolidate  Merge near-duplicate memories
  reindex      Rebuild the index from memory files
  export       Write all memories to a JSON backup (default: <memory_dir>/exports/)
  import       Re-create memories from a JSON backup
  serve        Run scheduled maintenance until interrupted"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def _serve(store: MemoryStore, config: MnemoConfig) -> None:
    from mnemo.scheduler.jobs import MaintenanceScheduler

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            pass  # Windows
    await MaintenanceScheduler(store, config).start(shutdown_event)


async def _run(cmd: str, args: list[str], config: MnemoConfig) -> int:
    store = MemoryStore(config)
    if cmd == "stats":
        print(json.dumps(await store.get_stats(), indent=2, ensure_ascii=False))
    elif cmd == "decay":
        print(f"Decayed {await store.run_maintenance('decay')} memories")
    elif cmd == "archive":
        days = int(args[0]) if args else config.maintenance.archive_days
        print(f"Archived {await store.run_maintenance('archive', days)} memories")
    elif cmd == "reindex":
        print(f"Indexed {await store.run_maintenance('reindex')} memories")
    elif cmd == "export":
        payload = await backup.export_memories(store)
        path = Path(args[0]) if args else backup.default_export_path(store.root, None, store.now())
        await asyncio.to_thread(backup.write_export, path, payload)
        print(f"Exported {payload['total_memories']} memories to {path}")
    elif cmd == "import" and args:
        data = await asyncio.to_thread(backup.read_export, Path(args[0]))
        result = await backup.import_memories(store, data)
        print(f"Imported {len(result.imported)} memories, {len(result.errors)} failed")
        for error in result.errors:
            print(f"  - {error}")
    elif cmd == "consolidate":
        scope = ConsolidationScope(
            type=args[0] if args else None,
            threshold=config.consolidation.similarity_threshold,
        )
        result = await store.consolidate(scope)
        print(f"Kept {len(result.kept)}, discarded {len(result.discarded_ids)}")
        for memory_id in result.discarded_ids:
            print(f"  - {memory_id}")
    elif cmd == "serve":
        await _serve(store, config)
    else:
        print(USAGE)
        return 1
    return 0


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "stats"
    config = load_config()
    _setup_logging(config.log_level)
    try:
        code = asyncio.run(_run(cmd, sys.argv[2:], config))
    except (ValueError, OSError) as e:
        print(f"Error: {e}")
        code = 2
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
