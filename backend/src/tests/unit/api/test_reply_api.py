"""
Tests for the reply-to-comment routes.
"""

USER = "user1"


class TestReplyEndpoint:
    def test_reply_requires_user_header(self, client):
        response = client.post("/api/v1/reply?fileID=f1&commentID=c1", json={"submission": {"message": "hi"}})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"

    def test_reply_rejects_other_user(self, client):
        response = client.post(
            "/api/v1/reply?fileID=f1&commentID=c1",
            json={"user_id": "someone-else", "submission": {"message": "hi"}},
            headers={"Mattermost-User-Id": USER},
        )
        assert response.status_code == 401
        assert response.json()["error"] == "Not authorized"
