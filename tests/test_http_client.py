import unittest
from unittest.mock import MagicMock, patch

import requests

from route_monitor.clients import HttpDaemonClient, get_client
from route_monitor.models import PieceStatus
from route_monitor.utils import ApiError, PayloadError, TransportError


def response(status=200, body=None, content=b"", json_error=False):
    resp = MagicMock()
    resp.ok = 200 <= status < 300
    resp.status_code = status
    resp.url = "http://daemon/api/x"
    resp.content = content
    if json_error:
        resp.json.side_effect = ValueError("Expecting value")
    else:
        resp.json.return_value = body
    return resp


class TestHttpDaemonClient(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = HttpDaemonClient("http://daemon:4444/", timeout=3, session=self.session)

    def last_call(self):
        return self.session.request.call_args

    def test_list_routes_filters_nameless_entries(self):
        self.session.request.return_value = response(body=[
            {"name": "movies", "folder": "/srv/movies", "total": 3},
            {"name": ""},
            {"Name": "shows", "Folder": "/srv/shows", "Total": 1},
            "garbage",
        ])
        routes = self.client.list_routes()
        self.assertEqual([(r.name, r.folder, r.total) for r in routes],
                         [("movies", "/srv/movies", 3), ("shows", "/srv/shows", 1)])
        args, kwargs = self.last_call()
        self.assertEqual(args, ("GET", "http://daemon:4444/api/routes"))
        self.assertEqual(kwargs["timeout"], 3)

    def test_list_routes_rejects_a_non_list(self):
        self.session.request.return_value = response(body={"routes": []})
        with self.assertRaises(PayloadError):
            self.client.list_routes()

    def test_invalid_json_is_a_payload_error(self):
        self.session.request.return_value = response(json_error=True)
        with self.assertRaises(PayloadError):
            self.client.get_watch_interval()

    def test_error_status_uses_server_error_text(self):
        self.session.request.return_value = response(status=400, body={"error": "route already exists"})
        with self.assertRaises(ApiError) as ctx:
            self.client.create_route("movies")
        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(str(ctx.exception), "route already exists")

    def test_error_status_without_body_uses_status_code(self):
        self.session.request.return_value = response(status=503, json_error=True)
        with self.assertRaises(ApiError) as ctx:
            self.client.delete_route("movies")
        self.assertEqual(ctx.exception.message, "HTTP 503")

    def test_transport_failures_are_wrapped(self):
        self.session.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(TransportError):
            self.client.list_routes()

    def test_route_torrents_parses_the_page(self):
        self.session.request.return_value = response(body={
            "page": 2, "size": 25, "total": 30,
            "items": [{"hash": "abc", "name": "A", "seeders": "4", "peers": 6, "sizeBytes": 2048,
                       "pieceChunks": [{"status": "C", "numPieces": 3}, {"status": "Z", "numPieces": 1}],
                       "totalPieces": 4}],
        })
        window = self.client.route_torrents("my movies", 2, 25)

        args, kwargs = self.last_call()
        self.assertEqual(args[1], "http://daemon:4444/api/routes/my%20movies/torrents")
        self.assertEqual(kwargs["params"], {"page": 2, "size": 25})
        self.assertEqual((window.page, window.total_items), (2, 30))
        item = window.items[0]
        self.assertEqual((item.id, item.seeders, item.size_bytes), ("abc", 4, 2048))
        self.assertEqual([c.status for c in item.piece_map], [PieceStatus.COMPLETE, PieceStatus.ERROR])

    def test_item_without_hash_is_skipped(self):
        self.session.request.return_value = response(body={"items": [{"name": "A"}, {"hash": "b", "name": "B"}],
                                                          "total": 2})
        with self.assertLogs("route_monitor.models", level="WARNING"):
            window = self.client.route_torrents("movies", 1, 25)
        self.assertEqual([item.id for item in window.items], ["b"])
        self.assertEqual(window.total_items, 2)

    def test_items_that_are_not_a_list_are_rejected(self):
        self.session.request.return_value = response(body={"items": {"hash": "b"}, "total": 1})
        with self.assertRaises(PayloadError):
            self.client.route_torrents("movies", 1, 25)

    def test_route_names_with_slashes_are_quoted(self):
        self.session.request.return_value = response(body={})
        self.client.delete_torrent("a/b", "abc")
        args, _ = self.last_call()
        self.assertEqual(args, ("DELETE", "http://daemon:4444/api/routes/a%2Fb/torrent/abc"))

    def test_mutations_send_the_documented_bodies(self):
        self.session.request.return_value = response(body={})
        self.client.add_magnet("movies", "magnet:?xt=1")
        self.assertEqual(self.last_call()[1]["json"], {"magnet": "magnet:?xt=1"})
        self.client.blacklist_torrent("movies", "abc")
        self.assertEqual(self.last_call()[0], ("POST", "http://daemon:4444/api/routes/movies/torrent/abc/blacklist"))
        self.client.create_route("shows")
        self.assertEqual(self.last_call()[1]["json"], {"name": "shows"})

    def test_set_watch_interval_returns_accepted_value(self):
        self.session.request.return_value = response(body={"interval": 30})
        self.assertEqual(self.client.set_watch_interval(30), 30)
        self.assertEqual(self.last_call()[1]["json"], {"interval": 30})

    def test_details_join_paths_with_the_torrent_name(self):
        self.session.request.return_value = response(body={
            "stats": {"hash": "abc", "name": "Movie"}, "folder": "/srv",
            "paths": {"fuse": "/mnt/fuse/movies", "httpfs": "/fs/movies"},
        })
        details = self.client.torrent_details("movies", "abc")
        self.assertEqual(details.fuse_path, "/mnt/fuse/movies/Movie")
        self.assertEqual(details.httpfs_path, "/fs/movies/Movie")

    def test_details_without_stats(self):
        self.session.request.return_value = response(body={"stats": None})
        with self.assertRaisesRegex(PayloadError, "No details available"):
            self.client.torrent_details("movies", "abc")

    def test_files(self):
        self.session.request.return_value = response(body={"files": [{"path": "a/b.mkv", "length": 10}]})
        files = self.client.torrent_files("movies", "abc")
        self.assertEqual([(f.path, f.length) for f in files], [("a/b.mkv", 10)])

    def test_upload_sends_multipart_file(self):
        self.session.request.return_value = response(body={})
        with patch("pathlib.Path.open", MagicMock()) as mock_open:
            self.client.upload_torrent_file("movies", "/tmp/x.torrent")
        _, kwargs = self.last_call()
        name, handle, content_type = kwargs["files"]["file"]
        self.assertEqual(name, "x.torrent")
        self.assertEqual(content_type, "application/x-bittorrent")
        mock_open.assert_called_once_with("rb")

    def test_upload_of_missing_file(self):
        with self.assertRaises(TransportError):
            self.client.upload_torrent_file("movies", "/nonexistent/dir/x.torrent")
        self.session.request.assert_not_called()

    def test_global_stats(self):
        self.session.request.return_value = response(body={
            "cacheItems": 4, "cacheFilled": 100, "cacheCapacity": 500,
            "torrentStats": {"downloadedBytes": 4096, "uploadedBytes": 1024, "timePassed": 2.0},
        })
        stats = self.client.global_stats()
        self.assertEqual((stats.downloaded, stats.uploaded, stats.cache_capacity_mb), (4096, 1024, 500))

    def test_log_stream_yields_chunks(self):
        resp = response()
        resp.iter_content.return_value = iter([b"a", b"", b"b"])
        self.session.request.return_value = resp
        self.assertEqual(list(self.client.open_log_stream(64)), [b"a", b"b"])
        _, kwargs = self.last_call()
        self.assertTrue(kwargs["stream"])
        resp.iter_content.assert_called_once_with(chunk_size=64)

    def test_log_snapshot_returns_raw_bytes(self):
        self.session.request.return_value = response(content=b'{"message":"x"}\n')
        self.assertEqual(self.client.fetch_log_snapshot(), b'{"message":"x"}\n')

    @patch("route_monitor.utils.time.sleep")
    def test_ping_retries_transport_errors(self, mock_sleep):
        self.session.request.side_effect = [requests.ConnectionError("refused"), response(body={"interval": 5})]
        self.client.ping()
        self.assertEqual(self.session.request.call_count, 2)
        mock_sleep.assert_called_once_with(2)

    @patch("route_monitor.utils.time.sleep")
    def test_ping_gives_up(self, mock_sleep):
        self.session.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(TransportError):
            self.client.ping()
        self.assertEqual(self.session.request.call_count, 3)

    def test_ping_does_not_retry_api_errors(self):
        self.session.request.return_value = response(status=401, body={"error": "unauthorized"})
        with self.assertRaises(ApiError):
            self.client.ping()
        self.assertEqual(self.session.request.call_count, 1)


class TestClientFactory(unittest.TestCase):
    def test_get_client_uses_settings(self):
        settings = MagicMock(base_url="https://daemon", timeout=7, verify_cert=False)
        client = get_client(settings)
        self.assertIsInstance(client, HttpDaemonClient)
        self.assertEqual(client.base_url, "https://daemon")
        self.assertEqual(client.timeout, 7)
        self.assertFalse(client.session.verify)


if __name__ == '__main__':
    unittest.main()
