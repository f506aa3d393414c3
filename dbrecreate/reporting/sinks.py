from __future__ import annotations

import io
from dataclasses import dataclass

from minio import Minio
from minio.error import S3Error

from dbrecreate.core import config
from dbrecreate.core.logging import log_event
from dbrecreate.core.models import TopologyReport


@dataclass(frozen=True)
class S3Location:
    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class LogReportSink:
    def publish(self, report: TopologyReport) -> None:
        log_event("topology_report", log_type="report", **report.model_dump(mode="json"))


class MinioReportSink:
    """Uploads each before/after topology report as a JSON object."""

    def __init__(self, client: Minio | None = None, bucket: str | None = None) -> None:
        self.client = client or _minio_client()
        self.bucket = bucket or config.REPORT_BUCKET

    def location_for(self, report: TopologyReport) -> S3Location:
        return S3Location(bucket=self.bucket, key=f"{report.entity.lower()}/{report.run_id}.json")

    def publish(self, report: TopologyReport) -> None:
        location = self.location_for(report)
        payload = report.model_dump_json(indent=2).encode("utf-8")
        try:
            if not self.client.bucket_exists(location.bucket):
                self.client.make_bucket(location.bucket)
            self.client.put_object(
                location.bucket,
                location.key,
                data=io.BytesIO(payload),
                length=len(payload),
                content_type="application/json",
            )
        except S3Error as exc:
            raise RuntimeError(f"Failed to upload topology report to {location.uri}") from exc
        log_event("topology_report_uploaded", log_type="report", uri=location.uri)


def _minio_client() -> Minio:
    endpoint = config.MINIO_ENDPOINT.replace("http://", "").replace("https://", "")
    return Minio(endpoint, access_key=config.MINIO_ACCESS_KEY, secret_key=config.MINIO_SECRET_KEY, secure=config.MINIO_SECURE)
