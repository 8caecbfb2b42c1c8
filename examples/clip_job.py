#!/usr/bin/env python3
"""
Operator script for the clip worker API.

Stands in for the external scheduler during development: enqueue a job,
then keep invoking the worker route until the queue drains.

Usage:
    python examples/clip_job.py enqueue PROJECT_ID VIDEO_URL     # Queue a job and print it
    python examples/clip_job.py drain                            # Invoke the worker until no jobs remain
    python examples/clip_job.py drain --interval 10              # Wait 10s between invocations
    python examples/clip_job.py status JOB_ID                    # Show a job's progress and clips
    python examples/clip_job.py run PROJECT_ID VIDEO_URL         # Enqueue, drain, then print the result

Reads WORKER_SECRET and API_KEY from .env.
"""

import argparse
import json
import os
import sys
import time

import requests
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Configuration
BASE_URL = os.getenv("CLIPWORKER_URL", "http://localhost:8000")
API_KEY = os.getenv("API_KEY", "")
WORKER_SECRET = os.getenv("WORKER_SECRET", "")

# Worker invocations block for up to one whole job
WORKER_TIMEOUT_SECONDS = 330
NO_WORK_MESSAGE = "No jobs to process"


def _api_headers() -> dict:
    headers = {"Content-Type": "application/json"}
    if API_KEY:
        headers["X-API-Key"] = API_KEY
    return headers


def enqueue(project_id: str, video_url: str) -> dict:
    """Queue a clip-generation job for a project."""
    print(f"\nSubmitting job for project {project_id}")
    print(f"   Video: {video_url}")

    response = requests.post(
        f"{BASE_URL}/api/klap/jobs",
        headers=_api_headers(),
        json={"projectId": project_id, "sourceMediaUrl": video_url},
        timeout=30,
    )
    if response.status_code != 202:
        print(f"Failed to enqueue job: {response.status_code}")
        print(response.text)
        sys.exit(1)

    job = response.json()
    print(f"Job queued: {job['jobId']} (status {job['status']})")
    return job


def invoke_worker() -> dict:
    """Trigger one worker invocation, the way the scheduler does."""
    response = requests.post(
        f"{BASE_URL}/api/worker/klap",
        headers={"Authorization": f"Bearer {WORKER_SECRET}"},
        timeout=WORKER_TIMEOUT_SECONDS,
    )
    if response.status_code != 200:
        print(f"Worker invocation failed: {response.status_code}")
        print(response.text)
        sys.exit(1)
    return response.json()


def drain(interval: float = 5.0, max_invocations: int = 100) -> int:
    """Invoke the worker until the queue reports no work. Returns jobs handled."""
    handled = 0
    for invocation in range(1, max_invocations + 1):
        started = time.time()
        result = invoke_worker()
        elapsed = time.time() - started

        if result.get("message") == NO_WORK_MESSAGE and "jobId" not in result:
            print(f"\nQueue drained after {invocation} invocations ({handled} jobs handled)")
            return handled

        handled += 1
        marker = "OK " if result.get("success") else "ERR"
        print(f"   [{marker}] [{elapsed:6.1f}s] job {result.get('jobId')}: {result.get('message')}")
        time.sleep(interval)

    print(f"\nStopped after {max_invocations} invocations; queue may not be empty")
    return handled


def get_status(job_id: str) -> dict:
    """Fetch a job's current state."""
    response = requests.get(f"{BASE_URL}/api/klap/jobs/{job_id}", headers=_api_headers(), timeout=30)
    if response.status_code != 200:
        print(f"Failed to get job status: {response.status_code}")
        print(response.text)
        sys.exit(1)
    return response.json()


def print_job(job: dict):
    print(f"\nJob {job['jobId']} [{job['status']}] {job['progress']}%")
    if job.get("error"):
        print(f"   Error: {job['error']}")
    for clip in job.get("clips", []):
        print(f"   - {clip['title']} ({clip['duration']:.0f}s, score {clip['viralityScore']:.2f})")
        print(f"     {clip['exportUrl']}")


def main():
    parser = argparse.ArgumentParser(description="Drive the clip worker API from the command line")
    subparsers = parser.add_subparsers(dest="command", required=True)

    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a clip-generation job")
    enqueue_parser.add_argument("project_id")
    enqueue_parser.add_argument("video_url")

    drain_parser = subparsers.add_parser("drain", help="Invoke the worker until the queue is empty")
    drain_parser.add_argument("--interval", type=float, default=5.0, help="Seconds between invocations")
    drain_parser.add_argument("--max-invocations", type=int, default=100)

    status_parser = subparsers.add_parser("status", help="Show a job")
    status_parser.add_argument("job_id")
    status_parser.add_argument("--json", action="store_true", help="Print the raw response")

    run_parser = subparsers.add_parser("run", help="Enqueue a job and drain the queue")
    run_parser.add_argument("project_id")
    run_parser.add_argument("video_url")
    run_parser.add_argument("--interval", type=float, default=5.0)

    args = parser.parse_args()

    if args.command == "enqueue":
        print_job(enqueue(args.project_id, args.video_url))
    elif args.command == "drain":
        drain(args.interval, args.max_invocations)
    elif args.command == "status":
        job = get_status(args.job_id)
        if args.json:
            print(json.dumps(job, indent=2))
        else:
            print_job(job)
    elif args.command == "run":
        job = enqueue(args.project_id, args.video_url)
        drain(args.interval)
        print_job(get_status(job["jobId"]))


if __name__ == "__main__":
    main()
