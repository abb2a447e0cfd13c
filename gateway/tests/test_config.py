import unittest

from chat_gateway.config import DEFAULT_ALLOWED_ORIGINS, MAX_UPLOAD_BYTES, GatewayConfig


class GatewayConfigTests(unittest.TestCase):
    def test_defaults_select_transient_mode(self):
        config = GatewayConfig.from_env({})

        self.assertEqual(config.port, 5000)
        self.assertIsNone(config.db_path)
        self.assertEqual(config.allowed_origins, DEFAULT_ALLOWED_ORIGINS)
        self.assertEqual(config.max_upload_bytes, MAX_UPLOAD_BYTES)
        self.assertEqual(config.transport.ping_interval_s, 30)

    def test_environment_overrides(self):
        config = GatewayConfig.from_env(
            {
                "HOST": "0.0.0.0",
                "PORT": "8080",
                "CHAT_DB_PATH": "/var/lib/chat/chat.db",
                "CHAT_UPLOADS_DIR": "/srv/uploads",
                "CHAT_ALLOWED_ORIGINS": "https://a.example, https://b.example,",
                "CHAT_LOG_LEVEL": "debug",
                "CHAT_PING_INTERVAL": "5",
            }
        )

        self.assertEqual(config.host, "0.0.0.0")
        self.assertEqual(config.port, 8080)
        self.assertEqual(config.db_path, "/var/lib/chat/chat.db")
        self.assertEqual(config.uploads_dir, "/srv/uploads")
        self.assertEqual(config.allowed_origins, ("https://a.example", "https://b.example"))
        self.assertEqual(config.log_level, "DEBUG")
        self.assertEqual(config.transport.ping_interval_s, 5)

    def test_empty_database_path_means_no_database(self):
        self.assertIsNone(GatewayConfig.from_env({"CHAT_DB_PATH": ""}).db_path)

    def test_transport_configs_are_not_shared(self):
        first = GatewayConfig()
        first.transport.ping_interval_s = 1
        self.assertEqual(GatewayConfig().transport.ping_interval_s, 30)


if __name__ == "__main__":
    unittest.main()
