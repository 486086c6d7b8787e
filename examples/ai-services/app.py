from __future__ import annotations

import argparse
import sys
from pathlib import Path

from arm_provisioner.config import apply, load, plan
from arm_provisioner.engine.errors import ApplyError


def _progress(change: object, event: str) -> None:
    address = getattr(change, "address", "unknown")
    if event == "start":
        print(f"[apply:start] {address}")
    else:
        print(f"[apply:done]  {address}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Plan/apply an ARM template via the Python API")
    parser.add_argument("--config", default="arm-provisioner.yaml", help="Path to config file")
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--destroy", action="store_true", help="Plan removal of everything")
    args = parser.parse_args()

    config = load(Path(args.config))

    plan_obj = plan(config, destroy=args.destroy)
    print("Plan summary:", plan_obj.summary())
    for change in plan_obj.changes:
        print(f"- {change.action.value:7} {change.address}")

    if not args.apply:
        return 0
    try:
        result = apply(plan_obj, config, progress=_progress)
    except ApplyError as exc:
        print(f"Apply failed on {exc.address}", file=sys.stderr)
        for node in exc.result.nodes:
            print(f"  {node.status.value:13} {node.address} {node.message or ''}", file=sys.stderr)
        return 1
    print("Apply summary:", result.summary())
    for name, value in result.outputs.items():
        print(f"{name} = {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
