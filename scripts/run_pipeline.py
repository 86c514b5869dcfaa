from pathlib import Path
import os
import sys
import uuid

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from ratewatch.logging import setup_logging
from ratewatch.pipeline.orchestrator import run_pipeline

if __name__ == '__main__':
    setup_logging()
    run_id = str(uuid.uuid4())
    print('Run', run_id)
    summary = run_pipeline(run_id)
    print('Done:', summary.get('status'), '| candidates:', summary.get('candidates', 0))
