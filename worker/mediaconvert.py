"""
AWS Elemental MediaConvert adapter.

Wraps the three calls the pool pipeline needs (DescribeEndpoints, CreateJob,
GetJob) behind async methods and maps botocore failures onto a small error
hierarchy:

    TranscodeServiceError         any failure talking to MediaConvert
      RateLimitedError            TooManyRequestsException / throttling
      EndpointDiscoveryError      account endpoint could not be resolved

boto3 is synchronous, so calls run in a worker thread. Client-side retries
are disabled; the pipeline does its own pacing and backoff.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from api.enums import RemoteJobStatus
from config import AWS_REGION, MEDIACONVERT_ENDPOINT, MEDIACONVERT_QUEUE, MEDIACONVERT_ROLE

logger = logging.getLogger(__name__)

RATE_LIMIT_ERROR_CODES = frozenset(
    ["TooManyRequestsException", "ThrottlingException", "Throttling", "RequestLimitExceeded"]
)

# Bitrate ceilings (bits/s) for the QVBR H.264 output
MAX_BITRATE_HD = 3_000_000
MAX_BITRATE_SD = 2_000_000


class TranscodeServiceError(Exception):
    """Raised when a MediaConvert call fails."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        self.message = message
        super().__init__(message)


class RateLimitedError(TranscodeServiceError):
    """MediaConvert rejected the request for exceeding its request rate."""

    pass


class EndpointDiscoveryError(TranscodeServiceError):
    """The account-specific MediaConvert endpoint could not be determined."""

    pass


@dataclass
class SubmittedJob:
    job_id: str
    status: str


@dataclass
class JobStatusReport:
    job_id: str
    status: RemoteJobStatus
    percent_complete: int = 0
    error_message: Optional[str] = None


def _translate_client_error(exc: ClientError) -> TranscodeServiceError:
    error = exc.response.get("Error", {}) if hasattr(exc, "response") else {}
    code = error.get("Code")
    message = error.get("Message") or str(exc)
    status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if code in RATE_LIMIT_ERROR_CODES or status_code == 429:
        return RateLimitedError(message, code=code)
    return TranscodeServiceError(message, code=code)


def build_job_settings(
    *,
    input_url: str,
    destination: str,
    target_height: int,
    user_metadata: Dict[str, Any],
    role: str = MEDIACONVERT_ROLE,
    queue: str = MEDIACONVERT_QUEUE,
) -> Dict[str, Any]:
    """
    Build a CreateJob request for a single progressive-download MP4.

    Args:
        input_url: Source object (s3:// or https://)
        destination: s3:// prefix the output is written under
        target_height: Output height in pixels; width follows the source aspect
        user_metadata: Tags stored on the job (stringified, MediaConvert only accepts strings)
        role: IAM role MediaConvert assumes
        queue: MediaConvert queue name or ARN
    """
    max_bitrate = MAX_BITRATE_HD if target_height >= 720 else MAX_BITRATE_SD

    video_description = {
        "Height": target_height,
        "ScalingBehavior": "DEFAULT",
        "TimecodeInsertion": "DISABLED",
        "AntiAlias": "ENABLED",
        "Sharpness": 50,
        "CodecSettings": {
            "Codec": "H_264",
            "H264Settings": {
                "InterlaceMode": "PROGRESSIVE",
                "NumberReferenceFrames": 3,
                "Syntax": "DEFAULT",
                "GopClosedCadence": 1,
                "GopSize": 60,
                "Slices": 1,
                "GopBReference": "DISABLED",
                "RateControlMode": "QVBR",
                "QualityTuneLevel": "SINGLE_PASS_HQ",
                "MaxBitrate": max_bitrate,
                "QvbrSettings": {"QvbrQualityLevel": 5},
                "CodecProfile": "MAIN",
                "CodecLevel": "AUTO",
                "SceneChangeDetect": "ENABLED",
                "FramerateControl": "INITIALIZE_FROM_SOURCE",
                "FramerateConversionAlgorithm": "DUPLICATE_DROP",
                "ParControl": "INITIALIZE_FROM_SOURCE",
                "NumberBFramesBetweenReferenceFrames": 2,
                "DynamicSubGop": "STATIC",
            },
        },
    }

    audio_description = {
        "AudioTypeControl": "FOLLOW_INPUT",
        "AudioSourceName": "Audio Selector 1",
        "CodecSettings": {
            "Codec": "AAC",
            "AacSettings": {
                "AudioDescriptionBroadcasterMix": "NORMAL",
                "Bitrate": 128000,
                "RateControlMode": "CBR",
                "CodecProfile": "LC",
                "CodingMode": "CODING_MODE_2_0",
                "RawFormat": "NONE",
                "SampleRate": 48000,
                "Specification": "MPEG4",
            },
        },
    }

    output_group = {
        "Name": f"{target_height}p MP4 Output",
        "OutputGroupSettings": {
            "Type": "FILE_GROUP_SETTINGS",
            "FileGroupSettings": {
                "Destination": destination,
                "DestinationSettings": {"S3Settings": {"AccessControl": {"CannedAcl": "PUBLIC_READ"}}},
            },
        },
        "Outputs": [
            {
                "NameModifier": f"-{target_height}p",
                "ContainerSettings": {
                    "Container": "MP4",
                    "Mp4Settings": {
                        "CslgAtom": "INCLUDE",
                        "FreeSpaceBox": "EXCLUDE",
                        "MoovPlacement": "PROGRESSIVE_DOWNLOAD",
                    },
                },
                "VideoDescription": video_description,
                "AudioDescriptions": [audio_description],
            }
        ],
    }

    job_input = {
        "FileInput": input_url,
        "TimecodeSource": "ZEROBASED",
        "AudioSelectors": {"Audio Selector 1": {"DefaultSelection": "DEFAULT", "ProgramSelection": 1}},
        "VideoSelector": {"ColorSpace": "FOLLOW", "Rotate": "AUTO"},
    }

    return {
        "Role": role,
        "Queue": queue,
        "Priority": 0,
        "StatusUpdateInterval": "SECONDS_10",
        "AccelerationSettings": {"Mode": "PREFERRED"},
        "UserMetadata": {key: str(value) for key, value in user_metadata.items() if value is not None},
        "Settings": {"OutputGroups": [output_group], "Inputs": [job_input]},
    }


class MediaConvertService:
    """Async facade over a boto3 MediaConvert client."""

    def __init__(
        self,
        region: str = AWS_REGION,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ):
        """
        Args:
            region: AWS region of the MediaConvert account
            endpoint_url: Account endpoint; discovered via DescribeEndpoints when empty
            client: Pre-built boto3 client (tests)
        """
        self.region = region
        self.endpoint_url = endpoint_url or MEDIACONVERT_ENDPOINT or None
        self._client = client
        self._boto_config = BotoConfig(retries={"max_attempts": 1, "mode": "standard"})

    async def _call(self, method: str, **kwargs) -> Dict[str, Any]:
        client = await self.connect()
        try:
            return await asyncio.to_thread(getattr(client, method), **kwargs)
        except ClientError as e:
            raise _translate_client_error(e) from e
        except BotoCoreError as e:
            raise TranscodeServiceError(str(e)) from e

    async def connect(self) -> Any:
        """Return the endpoint-bound client, discovering the endpoint on first use."""
        if self._client is not None:
            return self._client

        if not self.endpoint_url:
            self.endpoint_url = await self._discover_endpoint()

        self._client = boto3.client(
            "mediaconvert",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
            config=self._boto_config,
        )
        return self._client

    async def _discover_endpoint(self) -> str:
        try:
            discovery = boto3.client("mediaconvert", region_name=self.region, config=self._boto_config)
            response = await asyncio.to_thread(discovery.describe_endpoints, MaxResults=1)
        except (BotoCoreError, ClientError) as e:
            raise EndpointDiscoveryError(f"Failed to get MediaConvert endpoint: {e}") from e

        endpoints = response.get("Endpoints") or []
        url = endpoints[0].get("Url") if endpoints else None
        if not url:
            raise EndpointDiscoveryError(
                "Could not discover MediaConvert endpoint; set POOLTX_MEDIACONVERT_ENDPOINT"
            )
        logger.info(f"Using MediaConvert endpoint {url}")
        return url

    async def create_job(self, job_settings: Dict[str, Any]) -> SubmittedJob:
        response = await self._call("create_job", **job_settings)
        job = response.get("Job") or {}
        job_id = job.get("Id")
        if not job_id:
            raise TranscodeServiceError("CreateJob response did not include a job id")
        return SubmittedJob(job_id=job_id, status=job.get("Status") or RemoteJobStatus.SUBMITTED.value)

    async def get_job(self, job_id: str) -> JobStatusReport:
        """
        Describe a job.

        Raises:
            RateLimitedError: throttled by the service
            TranscodeServiceError: any other service or transport failure
            UnknownJobStatusError: the service returned a status outside RemoteJobStatus
        """
        response = await self._call("get_job", Id=job_id)
        job = response.get("Job") or {}
        return JobStatusReport(
            job_id=job_id,
            status=RemoteJobStatus.parse(job.get("Status")),
            percent_complete=int(job.get("JobPercentComplete") or 0),
            error_message=job.get("ErrorMessage"),
        )
