# bookin/utils/csv_loader.py
from __future__ import annotations

import csv
import io
import os
from functools import lru_cache
from typing import Dict, List

import boto3
from botocore.exceptions import ClientError

from .. import config

# DATA_MODE:
#   local_csv → 由 CSV_BASE_PATH 讀（預設 ./content）
#   r2_csv    → 由 Cloudflare R2（S3 相容）讀 R2_BUCKET/R2_PREFIX


def data_mode() -> str:
    return (config.get("DATA_MODE", "local_csv") or "local_csv").lower()


def base_path() -> str:
    return config.get("CSV_BASE_PATH", "./content") or "./content"


@lru_cache(maxsize=1)
def _r2_client():
    account_id = config.need("R2_ACCOUNT_ID")
    return boto3.client(
        "s3",
        endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
        aws_access_key_id=config.need("R2_ACCESS_KEY_ID"),
        aws_secret_access_key=config.need("R2_SECRET_ACCESS_KEY"),
        region_name="auto",
    )


def smart_decode(b: bytes) -> str:
    # 題目 CSV 可能由 Excel 匯出（Big5 / 有 BOM）
    for enc in ("utf-8-sig", "utf-8", "cp950", "big5"):
        try:
            return b.decode(enc)
        except UnicodeDecodeError:
            continue
    return b.decode("utf-8", errors="replace")


def read_bytes(rel_path: str) -> bytes:
    """讀取 content 下某個檔案；搵唔到就 FileNotFoundError。"""
    rel_path = rel_path.strip().lstrip("/")
    if ".." in rel_path.split("/"):
        raise FileNotFoundError(rel_path)

    if data_mode() == "r2_csv":
        bucket = config.need("R2_BUCKET")
        key = f"{config.get('R2_PREFIX', 'bookin/')}{rel_path}"
        try:
            obj = _r2_client().get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404"):
                raise FileNotFoundError(f"s3://{bucket}/{key}") from e
            raise
        return obj["Body"].read()

    path = os.path.join(base_path(), rel_path)
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    with open(path, "rb") as fp:
        return fp.read()


def read_rows(rel_path: str) -> List[Dict[str, str]]:
    text = smart_decode(read_bytes(rel_path))
    rows = []
    for r in csv.DictReader(io.StringIO(text)):
        # 多出嚟嘅欄（key=None）直接忽略
        rows.append({k.strip(): (v or "").strip() for k, v in r.items() if k is not None})
    return rows
