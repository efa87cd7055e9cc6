"""
End-to-end tests for the WebSocket transport and the read-only HTTP endpoints.
"""

import unittest

from fastapi.testclient import TestClient

from app import app
from constants import ROOM_NOT_FOUND_MESSAGE


class TestWebSocketRelay(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def test_connected_on_open(self):
        with self.client.websocket_connect("/ws") as ws:
            message = ws.receive_json()
            self.assertEqual(message["type"], "connected")
            self.assertTrue(message["clientId"])

    def test_root_path_also_accepts_connections(self):
        with self.client.websocket_connect("/") as ws:
            self.assertEqual(ws.receive_json()["type"], "connected")

    def test_create_join_chat_and_leave(self):
        with self.client.websocket_connect("/ws") as ws1:
            c1 = ws1.receive_json()["clientId"]
            ws1.send_json({"type": "create_room", "senderName": "Ann"})
            created = ws1.receive_json()
            self.assertEqual(created["type"], "room_created")
            room_id = created["roomId"]

            with self.client.websocket_connect("/ws") as ws2:
                c2 = ws2.receive_json()["clientId"]
                ws2.send_json({"type": "join_room", "roomId": room_id, "senderName": "Bo"})
                self.assertEqual(ws2.receive_json(), {"type": "room_joined", "roomId": room_id})

                joined = ws1.receive_json()
                self.assertEqual(joined["type"], "user_joined")
                self.assertEqual(joined["senderId"], c2)
                self.assertEqual(joined["senderName"], "Bo")
                self.assertIsInstance(joined["timestamp"], int)

                ws1.send_json({"type": "chat_message", "roomId": room_id, "message": "hi"})
                chat = ws2.receive_json()
                self.assertEqual(chat["type"], "chat_message")
                self.assertEqual(chat["message"], "hi")
                self.assertEqual(chat["senderId"], c1)
                self.assertEqual(chat["senderName"], "Ann")

                # The sender's next frame is the rename confirmation, not an echo of its chat
                ws1.send_json({"type": "set_name", "senderName": "Annie"})
                self.assertEqual(ws1.receive_json(), {"type": "name_set", "senderName": "Annie"})
                renamed = ws2.receive_json()
                self.assertEqual(renamed["type"], "user_renamed")
                self.assertEqual(renamed["senderName"], "Annie")

                details = self.client.get(f"/rooms/{room_id}").json()
                self.assertEqual(details["member_count"], 2)
                self.assertEqual({m["session_id"] for m in details["members"]}, {c1, c2})

            left = ws1.receive_json()
            self.assertEqual(left["type"], "user_left")
            self.assertEqual(left["senderId"], c2)
            self.assertEqual(self.client.get(f"/rooms/{room_id}").json()["member_count"], 1)

            ws1.send_json({"type": "leave_room"})
            self.assertEqual(ws1.receive_json(), {"type": "room_left", "roomId": room_id})

        self.assertEqual(self.client.get(f"/rooms/{room_id}").status_code, 404)

    def test_join_missing_room(self):
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "join_room", "roomId": "nonexistent"})
            self.assertEqual(ws.receive_json(), {"type": "error", "message": ROOM_NOT_FOUND_MESSAGE})

    def test_malformed_frames_do_not_close_channel(self):
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("not json")
            ws.send_bytes(b"\xff\xfe")
            ws.send_json({"type": "dance"})
            ws.send_json({"type": "chat_message"})
            ws.send_text('{"type": "leave_room", "x": ' + "1" * 5000 + "}")
            ws.send_text("[" * 200000)
            ws.send_json({"type": "set_name", "senderName": "Still here"})
            self.assertEqual(ws.receive_json(), {"type": "name_set", "senderName": "Still here"})

    def test_oversized_number_keeps_member_in_room(self):
        with self.client.websocket_connect("/ws") as ws1:
            ws1.receive_json()
            ws1.send_json({"type": "create_room"})
            room_id = ws1.receive_json()["roomId"]

            with self.client.websocket_connect("/ws") as ws2:
                ws2.receive_json()
                ws2.send_json({"type": "join_room", "roomId": room_id})
                ws2.receive_json()
                ws1.receive_json()

                ws2.send_text('{"type": "set_name", "senderName": ' + "9" * 5000 + "}")
                ws2.send_json({"type": "set_name", "senderName": "Bo"})
                self.assertEqual(ws2.receive_json(), {"type": "name_set", "senderName": "Bo"})
                self.assertEqual(ws1.receive_json()["type"], "user_renamed")


class TestHttpEndpoints(unittest.TestCase):
    def test_health_and_room_listing(self):
        with TestClient(app) as client:
            self.assertEqual(client.get("/health").json(), {"status": "ok", "sessions": 0, "rooms": 0})
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                ws.send_json({"type": "create_room"})
                room_id = ws.receive_json()["roomId"]

                self.assertEqual(client.get("/health").json(), {"status": "ok", "sessions": 1, "rooms": 1})
                self.assertEqual(client.get("/rooms/").json(), [{"room_id": room_id, "member_count": 1}])

    def test_unknown_room_details(self):
        with TestClient(app) as client:
            response = client.get("/rooms/nope")
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.json()["detail"], ROOM_NOT_FOUND_MESSAGE)


if __name__ == "__main__":
    unittest.main()
