import base64
import unittest

from fastapi.testclient import TestClient

from recognition.api.client import RecognitionHttpClient
from recognition.api.server import create_app
from recognition.request import IdentificationRequest, Payload
from recognition.types import FailureReason, RecognitionError


def _body(attempt: int = 1, image: bytes = b"jpeg-bytes") -> dict:
    return {
        "request_id": "abc123",
        "attempt": attempt,
        "mime_type": "image/jpeg",
        "width": 32,
        "height": 24,
        "image_base64": base64.b64encode(image).decode("ascii"),
    }


class _TestClientSession:
    """Adapts the FastAPI test client to the requests.Session calls the HTTP client makes."""

    def __init__(self, client: TestClient) -> None:
        self._client = client

    def post(self, url, data=None, headers=None, timeout=None):
        return self._client.post(url, content=data, headers=headers)

    def close(self) -> None:
        self._client.close()


class StubServerTests(unittest.TestCase):
    def test_health(self) -> None:
        with TestClient(create_app()) as client:
            self.assertEqual(client.get("/health").json(), {"status": "ok"})

    def test_identify_returns_specimen_and_records_attempts(self) -> None:
        app = create_app()
        with TestClient(app) as client:
            response = client.post("/v1/identify", json=_body())
            client.post("/v1/identify", json=_body(attempt=2))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["name"], "Amethyst")
        self.assertEqual(app.state.received, [("abc123", 1), ("abc123", 2)])

    def test_failure_plan_shapes(self) -> None:
        plan = ["network", "rate_limited", "malformed_response", "server_rejected"]
        with TestClient(create_app(failure_plan=plan)) as client:
            network = client.post("/v1/identify", json=_body())
            limited = client.post("/v1/identify", json=_body())
            malformed = client.post("/v1/identify", json=_body())
            rejected = client.post("/v1/identify", json=_body())
            recovered = client.post("/v1/identify", json=_body())

        self.assertEqual(network.status_code, 503)
        self.assertEqual(network.json()["category"], "unavailable")
        self.assertEqual(limited.status_code, 429)
        self.assertEqual(limited.headers["retry-after"], "1")
        self.assertEqual(malformed.status_code, 200)
        self.assertNotIn("{", malformed.text)
        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(len(rejected.json()["suggestions"]), 2)
        self.assertEqual(recovered.json()["name"], "Amethyst")

    def test_invalid_payloads_are_rejected(self) -> None:
        with TestClient(create_app()) as client:
            bad_base64 = client.post("/v1/identify", json={**_body(), "image_base64": "@@@"})
            missing = client.post("/v1/identify", json={"request_id": "abc123"})

        self.assertEqual(bad_base64.status_code, 400)
        self.assertEqual(bad_base64.json()["category"], "rejected")
        self.assertEqual(missing.status_code, 422)


class HttpClientAgainstStubTests(unittest.TestCase):
    def _send(self, plan, count):
        app = create_app(failure_plan=plan)
        outcomes = []
        with TestClient(app) as test_client:
            client = RecognitionHttpClient(
                base_url="http://testserver", session=_TestClientSession(test_client)
            )
            request = IdentificationRequest(payload=Payload(data=b"jpeg-bytes", width=32, height=24))
            for _ in range(count):
                try:
                    outcomes.append(client.send(request))
                except RecognitionError as exc:
                    outcomes.append(exc.failure)
                request = request.next_attempt()
        return app, outcomes

    def test_each_failure_shape_is_classified(self) -> None:
        plan = ["network", "rate_limited", "malformed_response", "server_rejected"]
        app, outcomes = self._send(plan, 5)

        reasons = [outcome.reason for outcome in outcomes[:4]]
        self.assertEqual(
            reasons,
            [
                FailureReason.NETWORK,
                FailureReason.RATE_LIMITED,
                FailureReason.MALFORMED_RESPONSE,
                FailureReason.SERVER_REJECTED,
            ],
        )
        self.assertEqual(outcomes[1].retry_after, 1.0)
        self.assertEqual(outcomes[4].name, "Amethyst")
        self.assertEqual([attempt for _, attempt in app.state.received], [1, 2, 3, 4, 5])


if __name__ == "__main__":
    unittest.main()
