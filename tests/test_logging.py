#!/usr/bin/env python3
"""
Unit tests for logging setup.

Tests console and file handler configuration, debug level selection,
credential scrubbing in written logs and retention cleanup.
"""

import os
import time
import shutil
import logging
import tempfile
import unittest

from ldap_sql_sync.logging_setup import LOG_FILE_NAME, LoggingManager, SensitiveDataFilter


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='ldap_sql_sync_logs_')
        self.root_logger = logging.getLogger()
        self.saved_handlers = self.root_logger.handlers[:]
        self.saved_level = self.root_logger.level
        self.manager = LoggingManager()

    def tearDown(self):
        for handler in self.root_logger.handlers[:]:
            handler.close()
        self.root_logger.handlers[:] = self.saved_handlers
        self.root_logger.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_console_only(self):
        self.manager.setup_logging({'level': 'WARNING'})

        self.assertEqual(self.root_logger.level, logging.WARNING)
        self.assertEqual(len(self.root_logger.handlers), 1)
        handler = self.root_logger.handlers[0]
        self.assertIsInstance(handler, logging.StreamHandler)
        self.assertTrue(any(isinstance(f, SensitiveDataFilter) for f in handler.filters))

    def test_debug_flag_and_verbose(self):
        self.manager.setup_logging({'level': 'INFO', 'debug': True})
        self.assertEqual(self.root_logger.level, logging.DEBUG)

        manager = LoggingManager()
        manager.setup_logging({'level': 'ERROR'}, verbose=True)
        self.assertEqual(self.root_logger.level, logging.DEBUG)

    def test_configured_only_once(self):
        self.manager.setup_logging({'level': 'INFO'})
        self.manager.setup_logging({'level': 'ERROR'})

        self.assertTrue(self.manager.configured)
        self.assertEqual(self.root_logger.level, logging.INFO)

    def test_file_logging_scrubs_credentials(self):
        self.manager.setup_logging({'level': 'INFO', 'log_dir': self.temp_dir, 'console_output': False})

        logging.getLogger('ldap_sql_sync.test').info('Bind with password=topsecret')
        for handler in self.root_logger.handlers:
            handler.flush()

        with open(os.path.join(self.temp_dir, LOG_FILE_NAME)) as f:
            content = f.read()

        self.assertIn('password=****', content)
        self.assertNotIn('topsecret', content)
        self.assertIn('[INFO] ldap_sql_sync.test', content)

    def test_old_logs_are_removed(self):
        old_log = os.path.join(self.temp_dir, f'{LOG_FILE_NAME}.2020-01-01')
        recent_log = os.path.join(self.temp_dir, f'{LOG_FILE_NAME}.2099-01-01')
        for path in (old_log, recent_log):
            with open(path, 'w') as f:
                f.write('old\n')
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old_log, (ten_days_ago, ten_days_ago))

        self.manager.setup_logging({'log_dir': self.temp_dir, 'retention_days': 7, 'console_output': False})

        self.assertFalse(os.path.exists(old_log))
        self.assertTrue(os.path.exists(recent_log))


if __name__ == '__main__':
    unittest.main()
