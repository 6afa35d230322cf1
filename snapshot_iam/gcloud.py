"""
gcloud
------

gcloud CLI 호출 공통 유틸.

- stdout/stderr 를 캡처하여 실패 시 일부를 에러 메시지에 포함
- --format=json 결과를 파싱해서 돌려줌
- NOT_FOUND / ALREADY_EXISTS 여부를 예외에서 바로 확인 가능
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from textwrap import shorten
from typing import Any, Optional, Sequence

from .logging_utils import get_logger


logger = get_logger(__name__)


class GcloudError(RuntimeError):
    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    @property
    def not_found(self) -> bool:
        text = self.stderr.lower()
        return "not_found" in text or "not found" in text or "does not exist" in text

    @property
    def already_exists(self) -> bool:
        text = self.stderr.lower()
        return "already_exists" in text or "already exists" in text


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str


def build_command(
    args: Sequence[str],
    *,
    project: Optional[str] = None,
    as_json: bool = False,
) -> list[str]:
    cmd = ["gcloud", *args]
    if project:
        cmd.append(f"--project={project}")
    if as_json:
        cmd.append("--format=json")
    cmd.append("--quiet")
    return cmd


def _run(cmd: list[str], *, timeout: float) -> RunResult:
    logger.info("명령 실행: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise GcloudError(
            "gcloud 명령을 찾을 수 없습니다. gcloud CLI 가 설치/초기화되어 있는지 확인하세요."
        ) from e
    except subprocess.TimeoutExpired as e:
        raise GcloudError(
            f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {' '.join(cmd)}"
        ) from e
    except subprocess.CalledProcessError as e:
        stdout = (e.stdout or "").strip()
        stderr = (e.stderr or "").strip()
        detail = ""
        if stderr:
            detail = "\nstderr:\n" + shorten(stderr, width=2000)
        elif stdout:
            detail = "\nstdout:\n" + shorten(stdout, width=2000)
        raise GcloudError(
            f"명령 실행 실패: {' '.join(cmd)} (exit={e.returncode}){detail}",
            returncode=e.returncode,
            stderr=stderr,
        ) from e

    if result.stdout:
        logger.debug("명령 stdout: %s", shorten(result.stdout.strip(), width=2000))
    if result.stderr:
        logger.debug("명령 stderr: %s", shorten(result.stderr.strip(), width=2000))
    return RunResult(returncode=result.returncode, stdout=result.stdout or "", stderr=result.stderr or "")


def run_gcloud(
    args: Sequence[str],
    *,
    project: Optional[str] = None,
    as_json: bool = False,
    timeout: float = 300.0,
) -> Any:
    """
    gcloud 를 실행한다.

    as_json=True 이면 stdout 을 JSON 으로 파싱해서 반환하고 (빈 출력이면 None),
    아니면 stdout 문자열을 그대로 반환한다.
    """
    cmd = build_command(args, project=project, as_json=as_json)
    result = _run(cmd, timeout=timeout)
    if not as_json:
        return result.stdout
    text = result.stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise GcloudError(
            f"gcloud 출력이 JSON 이 아닙니다: {' '.join(cmd)}\n" + shorten(text, width=2000)
        ) from e
