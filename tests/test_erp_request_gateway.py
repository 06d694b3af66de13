import http.client
import unittest

from storefront.contexts.erp.domain.gateway import (
    ErpAuthError,
    ErpCircuitOpenError,
    ErpCriticalError,
    ErpLockoutError,
    ErpNetworkError,
    ErpRateLimitError,
    ErpValidationError,
)
from storefront.contexts.erp.infrastructure.circuit_breaker import STATE_CLOSED, STATE_HALF_OPEN, STATE_OPEN
from storefront.contexts.erp.infrastructure.client import ErpRequestGateway, GatewayState
from storefront.contexts.erp.infrastructure.session_manager import ErpCredentials
from storefront.contexts.erp.infrastructure.transport import TransportResponse
from storefront.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.fakes import ManualClock, ScriptedTransport, data_ok, json_response, login_ok, network_down


LOGIN = "/OAPI/V2/OAPILogin"
ENDPOINT = "/OAPI/V2/Test/Endpoint"

_SESSION_EXPIRED = json_response({"Status": "401", "Error": {"Message": "Please login (session has not been authenticated)"}})
_SERVER_ERROR = json_response({"Status": "500", "Error": {"Message": "Internal error"}}, status=500)


class ErpRequestGatewayTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.clock = ManualClock()
        self.credentials = ErpCredentials(
            company_code="ACME",
            user_id="api-user",
            api_cert_key="CERT",
            zone="CC",
            zone_discovery=False,
        )

    def _gateway(self, transport, **overrides) -> ErpRequestGateway:
        settings = {
            "backoff_jitter_ratio": 0.0,
            "login_min_interval_seconds": 0.0,
        }
        settings.update(overrides)
        state = GatewayState.create(
            transport=transport,
            credentials=self.credentials,
            clock=self.clock,
            sleep=self.clock.sleep,
            **settings,
        )
        return ErpRequestGateway(state, transport=transport, credentials=self.credentials, sleep=self.clock.sleep)

    def test_authenticated_call_carries_session_in_query_body_and_cookie(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok("TOKEN-XYZ")).on(ENDPOINT, data_ok([{"PROD_CD": "A"}]))
        gateway = self._gateway(transport)

        response = gateway.execute(ENDPOINT, {"WH_CD": "00001"})

        self.assertTrue(response.ok)
        self.assertEqual(response.datas(), [{"PROD_CD": "A"}])
        url, body, headers = transport.calls_to(ENDPOINT)[0]
        self.assertEqual(url, "https://oapicc.ecount.com/OAPI/V2/Test/Endpoint?SESSION_ID=TOKEN-XYZ")
        self.assertEqual(body, {"COM_CODE": "ACME", "API_CERT_KEY": "CERT", "WH_CD": "00001"})
        self.assertEqual(headers, {"Cookie": "ECOUNT_SESSIONID=TOKEN-XYZ"})

    def test_unauthenticated_call_skips_login(self) -> None:
        transport = ScriptedTransport().on(ENDPOINT, data_ok([]))
        gateway = self._gateway(transport)

        gateway.execute(ENDPOINT, {"COM_CODE": "ACME"}, requires_auth=False)

        url, body, _headers = transport.calls[0]
        self.assertNotIn("SESSION_ID", url)
        self.assertNotIn("API_CERT_KEY", body)
        self.assertEqual(transport.calls_to(LOGIN), [])

    def test_expired_session_is_renewed_once_without_counting_a_failure(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok("T1"), login_ok("T2")).on(ENDPOINT, _SESSION_EXPIRED, data_ok([]))
        gateway = self._gateway(transport)

        gateway.execute(ENDPOINT)

        self.assertEqual(len(transport.calls_to(LOGIN)), 2)
        self.assertTrue(transport.calls_to(ENDPOINT)[1][0].endswith("SESSION_ID=T2"))
        snapshot = gateway.state.snapshot()
        self.assertEqual(snapshot["circuit"]["failure_count"], 0)
        self.assertEqual(snapshot["backoff"]["endpoints"], [])

    def test_second_auth_failure_is_raised_and_invalidates_session(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok()).on(ENDPOINT, _SESSION_EXPIRED)
        gateway = self._gateway(transport)

        with self.assertRaises(ErpAuthError):
            gateway.execute(ENDPOINT)

        self.assertEqual(len(transport.calls_to(ENDPOINT)), 2)
        self.assertFalse(gateway.state.session.snapshot()["active"])
        self.assertEqual(gateway.state.circuit.snapshot()["failure_count"], 1)
        self.assertFalse(gateway.state.lockout.snapshot()["consecutive_critical_errors"])

    def test_non_json_body_on_authenticated_call_is_treated_as_expired_session(self) -> None:
        html = TransportResponse(status=200, content_type="text/html", body="<html>login</html>")
        transport = ScriptedTransport().on(LOGIN, login_ok("T1"), login_ok("T2")).on(ENDPOINT, html, data_ok([]))
        gateway = self._gateway(transport)

        gateway.execute(ENDPOINT)

        self.assertEqual(len(transport.calls_to(LOGIN)), 2)

    def test_breaker_opens_after_three_critical_failures_then_allows_one_trial(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok()).on(
            ENDPOINT, _SERVER_ERROR, _SERVER_ERROR, _SERVER_ERROR, data_ok([])
        )
        gateway = self._gateway(transport, circuit_failure_threshold=3, circuit_timeout_seconds=30)

        for _ in range(3):
            with self.assertRaises(ErpCriticalError):
                gateway.execute(ENDPOINT)
        self.assertEqual(gateway.state.circuit.state, STATE_OPEN)

        with self.assertRaises(ErpCircuitOpenError) as ctx:
            gateway.execute(ENDPOINT)
        self.assertIn("wait 30 seconds", str(ctx.exception))
        self.assertEqual(ctx.exception.code, "circuit_open")
        self.assertEqual(len(transport.calls_to(ENDPOINT)), 3)

        self.clock.advance(31)
        gateway.execute(ENDPOINT)
        self.assertEqual(gateway.state.circuit.state, STATE_CLOSED)
        self.assertEqual(len(transport.calls_to(ENDPOINT)), 4)

    def test_garbled_response_on_half_open_trial_reopens_breaker(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok()).on(
            ENDPOINT,
            _SERVER_ERROR,
            _SERVER_ERROR,
            http.client.BadStatusLine("GARBAGE"),
            data_ok([]),
        )
        gateway = self._gateway(transport, circuit_failure_threshold=2, circuit_timeout_seconds=30)

        for _ in range(2):
            with self.assertRaises(ErpCriticalError):
                gateway.execute(ENDPOINT)
        self.assertEqual(gateway.state.circuit.state, STATE_OPEN)

        self.clock.advance(31)
        with self.assertRaises(ErpNetworkError):
            gateway.execute(ENDPOINT)
        self.assertEqual(gateway.state.circuit.state, STATE_OPEN)
        self.assertEqual(gateway.state.lockout.snapshot()["consecutive_critical_errors"], 3)
        self.assertEqual(gateway.state.backoff.delay(ENDPOINT), 8.0)

        self.clock.advance(31)
        gateway.execute(ENDPOINT)
        self.assertEqual(gateway.state.circuit.state, STATE_CLOSED)
        self.assertEqual(len(transport.calls_to(ENDPOINT)), 4)

    def test_unexpected_error_during_half_open_trial_frees_the_trial(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok(), RuntimeError("login exploded"), login_ok()).on(
            ENDPOINT, _SERVER_ERROR, _SERVER_ERROR, data_ok([])
        )
        gateway = self._gateway(transport, circuit_failure_threshold=2, circuit_timeout_seconds=30)

        for _ in range(2):
            with self.assertRaises(ErpCriticalError):
                gateway.execute(ENDPOINT)
        gateway.state.session.invalidate()

        self.clock.advance(31)
        with self.assertRaises(RuntimeError):
            gateway.execute(ENDPOINT)
        self.assertEqual(gateway.state.circuit.state, STATE_HALF_OPEN)

        gateway.execute(ENDPOINT)
        self.assertEqual(gateway.state.circuit.state, STATE_CLOSED)
        self.assertEqual(len(transport.calls_to(LOGIN)), 3)

    def test_failed_zone_discovery_without_configured_zone_is_a_gateway_failure(self) -> None:
        self.credentials = ErpCredentials(
            company_code="ACME",
            user_id="api-user",
            api_cert_key="CERT",
            zone="",
            zone_discovery=True,
        )
        transport = ScriptedTransport().on("/OAPI/V2/Zone", _SERVER_ERROR).on(LOGIN, login_ok())
        gateway = self._gateway(transport)

        with self.assertRaises(ErpCriticalError) as ctx:
            gateway.execute(ENDPOINT)

        self.assertIn("zone could not be resolved", str(ctx.exception))
        self.assertEqual(transport.calls_to(LOGIN), [])
        self.assertEqual(gateway.state.circuit.snapshot()["failure_count"], 1)
        self.assertEqual(gateway.state.lockout.snapshot()["consecutive_critical_errors"], 1)
        self.assertEqual(metrics_snapshot()["erp"]["failures_by_category"], {"critical": 1})

    def test_backoff_delay_is_waited_before_the_next_call(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok()).on(ENDPOINT, _SERVER_ERROR, _SERVER_ERROR, data_ok([]))
        gateway = self._gateway(transport, circuit_failure_threshold=10)

        for _ in range(2):
            with self.assertRaises(ErpCriticalError):
                gateway.execute(ENDPOINT)
        gateway.execute(ENDPOINT)

        self.assertEqual(self.clock.sleeps, [2.0, 4.0])
        self.assertEqual(gateway.state.backoff.delay(ENDPOINT), 0.0)

    def test_lockout_trips_on_network_failures_and_blocks_without_calling(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok()).on(ENDPOINT, network_down())
        gateway = self._gateway(transport, lockout_max_errors=2, circuit_failure_threshold=10)

        for _ in range(2):
            with self.assertRaises(ErpNetworkError):
                gateway.execute(ENDPOINT)

        with self.assertRaises(ErpLockoutError) as ctx:
            gateway.execute(ENDPOINT)
        self.assertEqual(ctx.exception.code, "lockout_active")
        self.assertGreater(ctx.exception.retry_after_seconds, 0)
        self.assertEqual(len(transport.calls_to(ENDPOINT)), 2)

    def test_rate_limit_and_validation_do_not_count_toward_lockout(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok()).on(
            ENDPOINT,
            json_response({"Status": "412"}, status=412),
            json_response({"Status": "400", "Error": {"Message": "Invalid warehouse code"}}),
        )
        gateway = self._gateway(transport, lockout_max_errors=1, circuit_failure_threshold=10)

        with self.assertRaises(ErpRateLimitError):
            gateway.execute(ENDPOINT)
        with self.assertRaises(ErpValidationError) as ctx:
            gateway.execute(ENDPOINT)

        self.assertEqual(str(ctx.exception), "Invalid warehouse code")
        self.assertFalse(gateway.state.lockout.locked)
        self.assertTrue(gateway.state.session.snapshot()["active"])

    def test_failures_are_counted_in_metrics(self) -> None:
        transport = ScriptedTransport().on(LOGIN, login_ok()).on(ENDPOINT, _SERVER_ERROR)
        gateway = self._gateway(transport)

        with self.assertRaises(ErpCriticalError):
            gateway.execute(ENDPOINT)

        erp_metrics = metrics_snapshot()["erp"]
        self.assertEqual(erp_metrics["failures_by_category"], {"critical": 1})
        self.assertEqual(erp_metrics["logins"], {"success": 1})


if __name__ == "__main__":
    unittest.main()
