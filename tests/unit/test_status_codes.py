"""
Unit tests for status codes.
"""

from expserver.message.status_codes import Status, get_phrase


class TestStatus:

    def test_values(self):
        assert Status.OK == 200
        assert Status.BAD_REQUEST == 400
        assert Status.INTERNAL_SERVER_ERROR == 500

    def test_phrase(self):
        assert Status.BAD_REQUEST.phrase == "Bad Request"
        assert get_phrase(503) == "Service Unavailable"

    def test_categories(self):
        assert Status.CREATED.is_success
        assert Status.NOT_FOUND.is_client_error
        assert Status.NOT_FOUND.is_error
        assert Status.SERVICE_UNAVAILABLE.is_server_error
        assert not Status.OK.is_error
