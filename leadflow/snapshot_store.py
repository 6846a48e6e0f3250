# leadflow/snapshot_store.py
import json
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from leadflow.collaborators import SnapshotStore
from leadflow.errors import SnapshotNotFound
from leadflow.models import EntityRecord, RunStatistics

MANIFEST = "manifest.json"


class JsonSnapshotStore(SnapshotStore):
    """Overwrite-by-stage JSON snapshots, one directory per run.

    data/snapshots/run_20250101_120000/
        manifest.json     run metadata + stage names in save order
        discovering.json  {"stage", "timestamp", "records", "stats"}
        enriching.json
        ...
    """

    def __init__(self, base_dir: Path, run_id: Optional[str] = None):
        self.base_dir = Path(base_dir)
        self.run_id = run_id or f"run_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        self.run_dir = self.base_dir / self.run_id

    def _manifest_path(self) -> Path:
        return self.run_dir / MANIFEST

    def _read_manifest(self) -> dict:
        path = self._manifest_path()
        if not path.exists():
            return {"run_id": self.run_id, "stages": [], "metadata": {}}
        with open(path, "r") as f:
            return json.load(f)

    def _write_json(self, path: Path, data: dict):
        self.run_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp.replace(path)

    @property
    def metadata(self) -> dict:
        return self._read_manifest().get("metadata", {})

    def set_metadata(self, metadata: dict):
        manifest = self._read_manifest()
        manifest["metadata"] = metadata
        self._write_json(self._manifest_path(), manifest)

    def save(self, stage_name: str, records: list[EntityRecord], stats: RunStatistics):
        timestamp = datetime.now().isoformat()
        self._write_json(self.run_dir / f"{stage_name}.json", {
            "stage": stage_name,
            "timestamp": timestamp,
            "records": [r.to_dict() for r in records],
            "stats": stats.to_dict(),
        })

        manifest = self._read_manifest()
        stages = [s for s in manifest.get("stages", []) if s != stage_name]
        stages.append(stage_name)
        manifest["stages"] = stages
        manifest["updated_at"] = timestamp
        manifest["record_count"] = len(records)
        self._write_json(self._manifest_path(), manifest)

    def load(self, stage_name: str) -> tuple[list[EntityRecord], RunStatistics]:
        path = self.run_dir / f"{stage_name}.json"
        if not path.exists():
            raise SnapshotNotFound(f"No snapshot for stage '{stage_name}' in {self.run_id}")
        with open(path, "r") as f:
            data = json.load(f)
        records = [EntityRecord.from_dict(r) for r in data.get("records", [])]
        return records, RunStatistics.from_dict(data.get("stats", {}))

    def latest_stage(self) -> Optional[str]:
        stages = self._read_manifest().get("stages", [])
        return stages[-1] if stages else None

    def delete(self):
        if self.run_dir.exists():
            shutil.rmtree(self.run_dir)

    @classmethod
    def list_runs(cls, base_dir: Path) -> list[dict]:
        """Summaries of stored runs, newest first."""
        base_dir = Path(base_dir)
        if not base_dir.exists():
            return []

        runs = []
        for manifest_path in sorted(base_dir.glob(f"*/{MANIFEST}"), reverse=True):
            try:
                with open(manifest_path, "r") as f:
                    manifest = json.load(f)
            except (json.JSONDecodeError, OSError):
                continue
            stages = manifest.get("stages", [])
            runs.append({
                "run_id": manifest_path.parent.name,
                "path": manifest_path.parent,
                "last_stage": stages[-1] if stages else None,
                "stages": stages,
                "record_count": manifest.get("record_count", 0),
                "updated_at": manifest.get("updated_at", ""),
                "metadata": manifest.get("metadata", {}),
            })
        return runs
