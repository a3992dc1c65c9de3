"""Tests for the recognition HTTP client."""
from __future__ import annotations

import json

import httpx
import pytest

from access_vision.core.exceptions import (
    MalformedResponseError,
    QuotaExceededError,
    RateLimitedError,
    RecognitionTransportError,
    ValidationError,
)
from access_vision.core.recognition_client import FULL_FRAME
from conftest import make_mock_client


def _face(face_id="face_1", person_id="p-ana", name="Ana Lopez", registered=True, **box):
    return {
        "id": face_id,
        "boundingBox": box or {"x": 25, "y": 15, "width": 30, "height": 40},
        "matchedPersonId": person_id,
        "matchedPersonName": name,
        "confidence": 87,
        "isRegistered": registered,
    }


class TestDetectRequest:
    """Tests for the request sent to the recognition service."""

    @pytest.mark.asyncio
    async def test_sends_frame_roster_and_mode(self, sample_frame, roster):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(200, json={"faces": [], "totalFaces": 0, "message": "none"})

        client = make_mock_client(handler)
        await client.detect(sample_frame, roster)

        body = seen["body"]
        assert body["capturedImage"] == sample_frame
        assert body["mode"] == "detect"
        assert body["registeredFaces"] == [
            {"id": "p-ana", "name": "Ana Lopez"},
            {"id": "p-ben", "name": "Ben Okafor"},
        ]
        assert seen["headers"]["authorization"] == "Bearer anon-key"
        assert seen["headers"]["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_rejects_empty_frame_without_request(self, roster):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"faces": []})

        client = make_mock_client(handler)
        with pytest.raises(ValidationError):
            await client.detect("", roster)
        assert calls == []


class TestDetectResponse:
    """Tests for response parsing."""

    @pytest.mark.asyncio
    async def test_parses_faces(self, sample_frame, roster):
        client = make_mock_client(
            lambda request: httpx.Response(
                200,
                json={
                    "faces": [_face(), _face("face_2", None, None, False)],
                    "totalFaces": 2,
                    "message": "2 faces detected",
                },
            )
        )
        result = await client.detect(sample_frame, roster)

        assert result.total_faces == 2
        assert result.message == "2 faces detected"
        ana, unknown = result.faces
        assert ana.matched_person_id == "p-ana"
        assert ana.is_registered is True
        assert ana.confidence == 87
        assert unknown.matched_person_id is None
        assert unknown.matched_person_name is None
        assert unknown.is_registered is False

    @pytest.mark.asyncio
    async def test_empty_roster_resolves(self, sample_frame):
        client = make_mock_client(
            lambda request: httpx.Response(200, json={"faces": [_face()], "totalFaces": 1})
        )
        result = await client.detect(sample_frame, [])

        assert len(result.faces) == 1
        # a claimed match outside the roster is never registered
        assert result.faces[0].is_registered is False

    @pytest.mark.asyncio
    async def test_missing_faces_defaults_to_empty(self, sample_frame, roster):
        client = make_mock_client(lambda request: httpx.Response(200, json={"message": "?"}))
        result = await client.detect(sample_frame, roster)
        assert result.faces == ()
        assert result.total_faces == 0

    @pytest.mark.asyncio
    async def test_values_pass_through_unclamped(self, sample_frame, roster):
        client = make_mock_client(
            lambda request: httpx.Response(
                200, json={"faces": [_face(x=-10, y=5, width=120, height=40)]}
            )
        )
        box = (await client.detect(sample_frame, roster)).faces[0].bounding_box
        assert box.x == -10
        assert box.width == 120

    @pytest.mark.asyncio
    async def test_malformed_entries(self, sample_frame, roster):
        faces = ["junk", {"boundingBox": {"x": 1}}, _face(name=None)]
        client = make_mock_client(lambda request: httpx.Response(200, json={"faces": faces}))
        result = await client.detect(sample_frame, roster)

        assert len(result.faces) == 2
        assert result.faces[0].id == "face_2"
        assert result.faces[0].bounding_box.height == 0.0
        # missing name is filled from the roster
        assert result.faces[1].matched_person_name == "Ana Lopez"

    @pytest.mark.asyncio
    async def test_non_finite_numbers_default_to_zero(self, sample_frame, roster):
        body = (
            b'{"faces": [{"id": "face_1", "matchedPersonId": "p-ana", "isRegistered": true,'
            b' "confidence": NaN, "boundingBox": {"x": Infinity, "y": 10, "width": 20, "height": -Infinity}}],'
            b' "totalFaces": 1}'
        )
        client = make_mock_client(lambda request: httpx.Response(200, content=body))

        face = (await client.detect(sample_frame, roster)).faces[0]

        assert face.confidence == 0
        assert face.is_registered is True
        assert face.bounding_box.x == 0.0
        assert face.bounding_box.height == 0.0
        assert face.bounding_box.y == 10

    @pytest.mark.asyncio
    async def test_recognize_mode_single_face(self, sample_frame, roster):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["mode"] == "recognize"
            return httpx.Response(
                200,
                json={
                    "faceDetected": True,
                    "matchFound": True,
                    "matchedPersonId": "p-ben",
                    "matchedPersonName": "Ben Okafor",
                    "confidence": 91,
                    "message": "Match",
                },
            )

        client = make_mock_client(handler)
        result = await client.detect(sample_frame, roster, mode="recognize")

        assert len(result.faces) == 1
        face = result.faces[0]
        assert face.bounding_box == FULL_FRAME
        assert face.matched_person_id == "p-ben"
        assert face.is_registered is True

    @pytest.mark.asyncio
    async def test_recognize_mode_no_face(self, sample_frame, roster):
        client = make_mock_client(
            lambda request: httpx.Response(200, json={"faceDetected": False, "message": "none"})
        )
        result = await client.detect(sample_frame, roster, mode="recognize")
        assert result.faces == ()


class TestDetectErrors:
    """Tests for transport-level failures."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error",
        [
            (429, RateLimitedError),
            (402, QuotaExceededError),
            (500, RecognitionTransportError),
            (401, RecognitionTransportError),
        ],
    )
    async def test_status_codes(self, sample_frame, roster, status, error):
        client = make_mock_client(
            lambda request: httpx.Response(status, json={"error": "x", "faces": [], "totalFaces": 0})
        )
        with pytest.raises(error) as exc_info:
            await client.detect(sample_frame, roster)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_invalid_json(self, sample_frame, roster):
        client = make_mock_client(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(MalformedResponseError):
            await client.detect(sample_frame, roster)

    @pytest.mark.asyncio
    async def test_non_object_json(self, sample_frame, roster):
        client = make_mock_client(lambda request: httpx.Response(200, json=[1, 2]))
        with pytest.raises(MalformedResponseError):
            await client.detect(sample_frame, roster)

    @pytest.mark.asyncio
    async def test_network_error(self, sample_frame, roster):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_mock_client(handler)
        with pytest.raises(RecognitionTransportError) as exc_info:
            await client.detect(sample_frame, roster)
        assert exc_info.value.status_code is None
