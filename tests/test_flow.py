"""
Flow Integration Tests

Covers:
1. Model routing table (all eight combinations)
2. FlowTransport error normalization (HTML, bad JSON, network, non-2xx)
3. FlowOperations request shapes and protocol failures

Upstream is faked with httpx.MockTransport.

Run with:
    python -m pytest tests/test_flow.py -v
"""

import json
import os
import sys

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import FlowConfig
from core.errors import (
    FlowGateError,
    MissingTaskId,
    ReferenceUploadFailed,
    UpstreamError,
    UpstreamMalformedResponse,
)
from services.flow import (
    FlowImageRequest,
    FlowOperations,
    FlowTransport,
    ReferenceImage,
    VideoAspectRatio,
    VideoInputKind,
    VideoRequest,
    VIDEO_ROUTES,
    classify_video_input,
    resolve_video_route,
)
from services.flow.adapters import new_session_id, strip_data_uri


def flow_config() -> FlowConfig:
    return FlowConfig(
        api_base="https://sandbox.test",
        proxy_create_url="https://proxy.test/create",
        proxy_status_url="https://proxy.test/task-status",
        proxy_auth="Bearer proxy-secret",
        http_timeout=5,
    )


class FakeUpstream:
    """Routes requests by path to canned responses and records them."""

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def on(self, path: str, *responses):
        self.routes[path] = list(responses)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = request.url.path
        if request.url.host == "proxy.test" and key == "/create":
            body = json.loads(request.content)
            key = "proxy:" + httpx.URL(body["flow_url"]).path
        responses = self.routes.get(key)
        if not responses:
            return httpx.Response(404, json={"error": {"message": f"no route {key}"}})
        # The last canned response repeats
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def transport(self) -> FlowTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return FlowTransport(flow_config(), http_client=client)


class TestRouting:
    """Video routing decision table."""

    def test_table_is_total(self):
        for kind in VideoInputKind:
            for aspect in VideoAspectRatio:
                route = resolve_video_route(kind, aspect)
                assert route.model_key
                assert route.path.startswith("/v1/video:")
        assert len(VIDEO_ROUTES) == 8
        assert len({route.model_key for route in VIDEO_ROUTES.values()}) == 8

    def test_parallel_variants_share_a_path(self):
        for kind in VideoInputKind:
            landscape = resolve_video_route(kind, VideoAspectRatio.LANDSCAPE)
            portrait = resolve_video_route(kind, VideoAspectRatio.PORTRAIT)
            assert landscape.path == portrait.path
            assert landscape.model_key != portrait.model_key

    def test_classify_input(self):
        assert classify_video_input(None, None) == VideoInputKind.TEXT
        assert classify_video_input("m1", None) == VideoInputKind.START_IMAGE
        assert classify_video_input("m1", "m2") == VideoInputKind.START_END_IMAGE
        assert classify_video_input(None, "m2") == VideoInputKind.TEXT
        assert classify_video_input("m1", "m2", has_references=True) == VideoInputKind.REFERENCE_IMAGES

    def test_known_model_keys(self):
        assert resolve_video_route(VideoInputKind.TEXT, VideoAspectRatio.PORTRAIT).model_key == \
            "veo_3_1_t2v_fast_portrait_ultra"
        assert resolve_video_route(VideoInputKind.START_END_IMAGE, VideoAspectRatio.LANDSCAPE).model_key == \
            "veo_3_1_i2v_s_fast_ultra_fl"

    def test_aspect_ratio_parse(self):
        assert VideoAspectRatio.parse(None) == VideoAspectRatio.LANDSCAPE
        assert VideoAspectRatio.parse("9:16") == VideoAspectRatio.PORTRAIT
        assert VideoAspectRatio.parse("VIDEO_ASPECT_RATIO_PORTRAIT") == VideoAspectRatio.PORTRAIT
        assert VideoAspectRatio.parse("16:9") == VideoAspectRatio.LANDSCAPE


class TestTransport:
    """Uniform failure shape for upstream calls."""

    @pytest.mark.asyncio
    async def test_html_body_is_malformed_with_status(self, make_account):
        upstream = FakeUpstream().on(
            "/v1:uploadUserImage", httpx.Response(502, text="<!DOCTYPE html><html>Bad Gateway</html>")
        )
        transport = upstream.transport()

        with pytest.raises(UpstreamMalformedResponse) as exc_info:
            await transport.post_sandbox(make_account("a1"), "/v1:uploadUserImage", {})

        assert exc_info.value.status_code == 502
        assert exc_info.value.error_code == "UPSTREAM_HTML_ERROR"
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self, make_account):
        upstream = FakeUpstream().on("/v1:uploadUserImage", httpx.Response(200, text="not json {"))

        with pytest.raises(UpstreamMalformedResponse) as exc_info:
            await upstream.transport().post_sandbox(make_account("a1"), "/v1:uploadUserImage", {})

        assert exc_info.value.error_code == "INVALID_JSON"
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_network_error_maps_to_502(self, make_account):
        upstream = FakeUpstream().on("/v1:uploadUserImage", httpx.ConnectError("refused"))

        with pytest.raises(UpstreamError) as exc_info:
            await upstream.transport().post_sandbox(make_account("a1"), "/v1:uploadUserImage", {})

        assert exc_info.value.status_code == 502
        assert exc_info.value.error_code == "NETWORK_ERROR"
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_error_body_carries_upstream_code(self, make_account):
        upstream = FakeUpstream().on(
            "/v1:uploadUserImage",
            httpx.Response(400, json={"error": {"message": "quota", "status": "RESOURCE_EXHAUSTED"}}),
        )

        with pytest.raises(UpstreamError) as exc_info:
            await upstream.transport().post_sandbox(make_account("a1"), "/v1:uploadUserImage", {})

        assert exc_info.value.upstream_code == "RESOURCE_EXHAUSTED"
        assert exc_info.value.account_id == "a1"
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_sandbox_headers_carry_account_credentials(self, make_account):
        upstream = FakeUpstream().on("/v1:uploadUserImage", httpx.Response(200, json={}))

        await upstream.transport().post_sandbox(make_account("a1"), "/v1:uploadUserImage", {"x": 1})

        request = upstream.requests[0]
        assert request.headers["authorization"] == "Bearer token-a1"
        assert request.headers["cookie"] == "SID=a1"
        assert json.loads(request.content) == {"x": 1}

    @pytest.mark.asyncio
    async def test_proxy_envelope(self, make_account):
        upstream = FakeUpstream().on("proxy:/v1/x", httpx.Response(200, json={"taskId": "T"}))
        transport = upstream.transport()

        await transport.post_proxy(make_account("a1"), transport.sandbox_url("/v1/x"), {"k": "v"}, label="t")

        request = upstream.requests[0]
        body = json.loads(request.content)
        assert request.headers["Authorization"] == "Bearer proxy-secret"
        assert body == {
            "body_json": {"k": "v"},
            "flow_auth_token": "token-a1",
            "flow_url": "https://sandbox.test/v1/x",
        }

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        transport = FakeUpstream().transport()
        await transport.close()
        assert transport._http_client is None


class TestFlowOperations:
    """Adapter request shapes and protocol checks."""

    def test_helpers(self):
        assert strip_data_uri("data:image/png;base64,QUJD") == "QUJD"
        assert strip_data_uri("QUJD") == "QUJD"
        assert new_session_id().startswith(";")

    @pytest.mark.asyncio
    async def test_text_video_goes_through_proxy(self, make_account):
        route = resolve_video_route(VideoInputKind.TEXT, VideoAspectRatio.PORTRAIT)
        upstream = FakeUpstream().on("proxy:" + route.path, httpx.Response(200, json={"taskId": "T-1"}))
        ops = FlowOperations(upstream.transport())

        handle = await ops.create_video(
            make_account("a1"), VideoRequest(prompt="a fox", aspect_ratio=VideoAspectRatio.PORTRAIT)
        )

        assert handle.task_id == "T-1"
        assert handle.account_id == "a1"
        body = json.loads(upstream.requests[0].content)["body_json"]
        item = body["requests"][0]
        assert item["videoModelKey"] == route.model_key
        assert item["metadata"]["sceneId"] == handle.scene_id
        assert body["clientContext"]["projectId"] == "project-a1"
        assert body["clientContext"]["sessionId"].startswith(";")

    @pytest.mark.asyncio
    async def test_start_end_video_uploads_both_frames(self, make_account):
        route = resolve_video_route(VideoInputKind.START_END_IMAGE, VideoAspectRatio.LANDSCAPE)
        upstream = FakeUpstream()
        upstream.on(
            "/v1:uploadUserImage",
            httpx.Response(200, json={"mediaGenerationId": {"mediaGenerationId": "m-start"}}),
            httpx.Response(200, json={"mediaGenerationId": "m-end"}),
        )
        upstream.on("proxy:" + route.path, httpx.Response(200, json={"taskId": "T-2"}))
        ops = FlowOperations(upstream.transport())

        await ops.create_video(
            make_account("a1"), VideoRequest(prompt="p", image="data:image/jpeg;base64,AAA", end_image="BBB")
        )

        uploads = [r for r in upstream.requests if r.url.path == "/v1:uploadUserImage"]
        assert [json.loads(r.content)["imageInput"]["rawImageBytes"] for r in uploads] == ["AAA", "BBB"]
        item = json.loads(upstream.requests[-1].content)["body_json"]["requests"][0]
        assert item["startImage"] == {"mediaId": "m-start"}
        assert item["endImage"] == {"mediaId": "m-end"}

    @pytest.mark.asyncio
    async def test_failed_start_upload_aborts_instead_of_text_video(self, make_account):
        upstream = FakeUpstream().on("/v1:uploadUserImage", httpx.Response(200, json={}))

        with pytest.raises(ReferenceUploadFailed) as exc_info:
            await FlowOperations(upstream.transport()).create_video(
                make_account("a1"), VideoRequest(prompt="p", image="AAA")
            )

        assert not exc_info.value.retryable
        assert [r.url.path for r in upstream.requests] == ["/v1:uploadUserImage"]

    @pytest.mark.asyncio
    async def test_failed_end_upload_aborts(self, make_account):
        upstream = FakeUpstream().on(
            "/v1:uploadUserImage",
            httpx.Response(200, json={"mediaGenerationId": "m-start"}),
            httpx.Response(200, json={}),
        )

        with pytest.raises(ReferenceUploadFailed):
            await FlowOperations(upstream.transport()).create_video(
                make_account("a1"), VideoRequest(prompt="p", image="AAA", end_image="BBB")
            )

        assert all(r.url.host != "proxy.test" for r in upstream.requests)

    @pytest.mark.asyncio
    async def test_end_image_without_start_is_not_uploaded(self, make_account):
        route = resolve_video_route(VideoInputKind.TEXT, VideoAspectRatio.LANDSCAPE)
        upstream = FakeUpstream().on("proxy:" + route.path, httpx.Response(200, json={"taskId": "T-4"}))

        await FlowOperations(upstream.transport()).create_video(
            make_account("a1"), VideoRequest(prompt="p", end_image="BBB")
        )

        assert [r.url.path for r in upstream.requests] == ["/create"]
        item = json.loads(upstream.requests[0].content)["body_json"]["requests"][0]
        assert "endImage" not in item

    @pytest.mark.asyncio
    async def test_missing_task_id_is_fatal(self, make_account):
        route = resolve_video_route(VideoInputKind.TEXT, VideoAspectRatio.LANDSCAPE)
        upstream = FakeUpstream().on("proxy:" + route.path, httpx.Response(200, json={"success": True}))

        with pytest.raises(MissingTaskId) as exc_info:
            await FlowOperations(upstream.transport()).create_video(make_account("a1"), VideoRequest(prompt="p"))

        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_reference_upload_failure_is_fatal(self, make_account):
        upstream = FakeUpstream().on("/v1:uploadUserImage", httpx.Response(200, json={}))
        request = VideoRequest(prompt="p", reference_images=[ReferenceImage("AAA"), ReferenceImage("BBB")])

        with pytest.raises(ReferenceUploadFailed):
            await FlowOperations(upstream.transport()).create_video_with_refs(make_account("a1"), request)

        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_reference_video_uses_asset_images(self, make_account):
        route = resolve_video_route(VideoInputKind.REFERENCE_IMAGES, VideoAspectRatio.LANDSCAPE)
        upstream = FakeUpstream()
        upstream.on(
            "/v1:uploadUserImage",
            httpx.Response(200, json={"mediaGenerationId": "r1"}),
            httpx.Response(200, json={}),
        )
        upstream.on("proxy:" + route.path, httpx.Response(200, json={"taskId": "T-3"}))
        request = VideoRequest(prompt="p", reference_images=[ReferenceImage("AAA"), ReferenceImage("BBB")])

        handle = await FlowOperations(upstream.transport()).create_video_with_refs(make_account("a1"), request)

        item = json.loads(upstream.requests[-1].content)["body_json"]["requests"][0]
        assert handle.task_id == "T-3"
        assert item["referenceImages"] == [{"imageUsageType": "IMAGE_USAGE_TYPE_ASSET", "mediaId": "r1"}]

    @pytest.mark.asyncio
    async def test_upload_without_media_id_raises(self, make_account):
        upstream = FakeUpstream().on("/v1:uploadUserImage", httpx.Response(200, json={}))

        with pytest.raises(FlowGateError) as exc_info:
            await FlowOperations(upstream.transport()).upload_image(make_account("a1"), "AAA")

        assert exc_info.value.error_code == "NO_MEDIA_ID"

    @pytest.mark.asyncio
    async def test_flow_image_builds_one_request_per_image(self, make_account):
        upstream = FakeUpstream().on(
            "proxy:/v1/projects/project-a1/flowMedia:batchGenerateImages",
            httpx.Response(200, json={"success": True, "taskId": "F-1"}),
        )

        task = await FlowOperations(upstream.transport()).create_flow_image(
            make_account("a1"), FlowImageRequest(prompt="sky", number_of_images=3)
        )

        requests = json.loads(upstream.requests[0].content)["body_json"]["requests"]
        assert task.task_id == "F-1"
        assert task.project_id == "project-a1"
        assert len(requests) == 3
        assert {r["imageModelName"] for r in requests} == {"GEM_PIX_2"}
        assert len({r["seed"] for r in requests}) == 3

    @pytest.mark.asyncio
    async def test_flow_image_requires_success_flag(self, make_account):
        upstream = FakeUpstream().on(
            "proxy:/v1/projects/project-a1/flowMedia:batchGenerateImages",
            httpx.Response(200, json={"taskId": "F-1"}),
        )

        with pytest.raises(MissingTaskId):
            await FlowOperations(upstream.transport()).create_flow_image(make_account("a1"), FlowImageRequest())

    @pytest.mark.asyncio
    async def test_upscale_flow_image_uses_given_project(self, make_account):
        upstream = FakeUpstream().on(
            "proxy:/v1/flow/upsampleImage", httpx.Response(200, json={"success": True, "taskId": "U-1"})
        )

        task = await FlowOperations(upstream.transport()).upscale_flow_image(
            make_account("a1"), "media-9", project_id="p-owner"
        )

        body = json.loads(upstream.requests[0].content)["body_json"]
        assert task.project_id == "p-owner"
        assert body["clientContext"]["projectId"] == "p-owner"
        assert body["targetResolution"] == "UPSAMPLE_IMAGE_RESOLUTION_2K"

    @pytest.mark.asyncio
    async def test_upscale_video_returns_operation_name(self, make_account):
        upstream = FakeUpstream().on(
            "/v1/video:batchAsyncGenerateVideoUpsampleVideo",
            httpx.Response(200, json={"operations": [{"operation": {"name": "ops/up-1"}}]}),
        )

        handle = await FlowOperations(upstream.transport()).upscale_video(make_account("a1"), "m-1")

        body = json.loads(upstream.requests[0].content)
        assert handle.task_id == "ops/up-1"
        assert body["requests"][0]["videoInput"] == {"mediaId": "m-1"}

    @pytest.mark.asyncio
    async def test_fetch_operation_maps_404_to_lost_access(self, make_account):
        upstream = FakeUpstream().on(
            "/v1:batchCheckAsyncVideoGenerationStatus", httpx.Response(404, json={"error": {"message": "nope"}})
        )

        with pytest.raises(UpstreamError) as exc_info:
            await FlowOperations(upstream.transport()).fetch_operation(make_account("a1"), "ops/1")

        assert exc_info.value.status_code == 403
        assert exc_info.value.error_code == "ACCOUNT_LOST_ACCESS"
        assert exc_info.value.retryable
        assert "cookie" not in upstream.requests[0].headers

    @pytest.mark.asyncio
    async def test_fetch_operation_without_entries(self, make_account):
        upstream = FakeUpstream().on(
            "/v1:batchCheckAsyncVideoGenerationStatus", httpx.Response(200, json={"operations": []})
        )

        with pytest.raises(FlowGateError) as exc_info:
            await FlowOperations(upstream.transport()).fetch_operation(make_account("a1"), "ops/1")

        assert exc_info.value.error_code == "OPERATION_NOT_FOUND"
