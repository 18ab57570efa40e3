from __future__ import annotations

import os
from datetime import datetime, timedelta
from textwrap import dedent

from airflow import DAG
from airflow.providers.docker.operators.docker import DockerOperator
from docker.types import Mount

DEFAULT_ARGS = {
    "owner": "data-platform",
    "depends_on_past": False,
    "email_on_failure": False,
    "email_on_retry": False,
    "retries": 1,
    "retry_delay": timedelta(minutes=30),
}

COMPOSE_PROJECT = os.environ.get("COMPOSE_PROJECT_NAME", "shf-price-index")
DOCKER_NETWORK = f"{COMPOSE_PROJECT}_default"
API_IMAGE = os.environ.get("API_IMAGE", "shf-price-index-api:latest")
DATA_MOUNT = Mount(target="/app/data", source="price_index_data", type="volume")

ENV_KEYS = [
    "SHF_CSV_URL",
    "PRICE_INDEX_DB_PATH",
    "INGEST_BATCH_SIZE",
    "STALE_UPLOAD_MINUTES",
    "LOG_LEVEL",
]

ENVIRONMENT = {key: value for key in ENV_KEYS if (value := os.environ.get(key))}

QUALITY_CHECK_SCRIPT = dedent(
    """
from storage.db import connect

conn = connect(read_only=True)
counts = {
    "indices": conn.execute("SELECT COUNT(*) FROM residential_price_indices").fetchone()[0],
    "national": conn.execute(
        "SELECT COUNT(*) FROM locations WHERE type = 'national'"
    ).fetchone()[0],
    "states": conn.execute("SELECT COUNT(*) FROM locations WHERE type = 'state'").fetchone()[0],
    "last_status": conn.execute(
        "SELECT status FROM data_upload_logs ORDER BY upload_date DESC LIMIT 1"
    ).fetchone()[0],
}
conn.close()

assert counts["indices"] > 0, "No price indices loaded"
assert counts["national"] == 1, "Expected exactly one national location"
assert counts["states"] >= 32, "Unexpected state count"
assert counts["last_status"] == "completed", "Last upload did not complete"
print(counts)
    """
).strip()

with DAG(
    dag_id="ingest_shf_quarterly",
    description="Download the SHF price-index export, ingest it and sweep stale uploads",
    schedule="0 6 15 2,5,8,11 *",
    start_date=datetime(2024, 1, 1),
    catchup=False,
    default_args=DEFAULT_ARGS,
    max_active_runs=1,
    tags=["price-index", "etl"],
) as dag:

    sweep_stale_uploads = DockerOperator(
        task_id="sweep_stale_uploads",
        image=API_IMAGE,
        command=["python", "-m", "jobs", "sweep-stale"],
        docker_url="unix://var/run/docker.sock",
        auto_remove=True,
        network_mode=DOCKER_NETWORK,
        environment=ENVIRONMENT,
        mounts=[DATA_MOUNT],
        mount_tmp_dir=False,
        do_xcom_push=False,
    )

    ingest_shf = DockerOperator(
        task_id="ingest_shf",
        image=API_IMAGE,
        command=["python", "-m", "jobs", "ingest"],
        docker_url="unix://var/run/docker.sock",
        auto_remove=True,
        network_mode=DOCKER_NETWORK,
        environment=ENVIRONMENT,
        mounts=[DATA_MOUNT],
        mount_tmp_dir=False,
        do_xcom_push=False,
    )

    data_quality_checks = DockerOperator(
        task_id="data_quality_checks",
        image=API_IMAGE,
        command=["python", "-c", QUALITY_CHECK_SCRIPT],
        docker_url="unix://var/run/docker.sock",
        auto_remove=True,
        network_mode=DOCKER_NETWORK,
        environment=ENVIRONMENT,
        mounts=[DATA_MOUNT],
        mount_tmp_dir=False,
        do_xcom_push=False,
    )

    sweep_stale_uploads >> ingest_shf >> data_quality_checks
