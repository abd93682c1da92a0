"""Convenience entry point for running the Celery worker.

Most deployments will invoke the standard Celery CLI, but keeping a small
script makes local testing or Procfile-style runners straightforward.
Pass ``--beat`` to embed the scheduler that drives payment reconciliation.
"""
from __future__ import annotations

import sys

from .config.celery import celery_app


def main() -> None:
    argv = ["worker", "--hostname=worker@%h", "--loglevel=INFO", "-Q", "notifications,payments"]
    if "--beat" in sys.argv[1:]:
        argv.append("--beat")
    celery_app.worker_main(argv=argv)


if __name__ == "__main__":
    main()
