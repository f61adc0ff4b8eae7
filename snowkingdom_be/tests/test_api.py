import json
import os
import shutil
import tempfile
import unittest
from decimal import Decimal
from unittest.mock import patch

from snowkingdom_be.app import create_app
from snowkingdom_be.config import TestingConfig
from snowkingdom_be.error_codes import ErrorCodes
from snowkingdom_be.models import db
from snowkingdom_be.services.history_service import SpinHistoryRecorder
from snowkingdom_be.utils.game_config_manager import GameConfigManager
from snowkingdom_be.tests.game_fixtures import (
    A_THREE_GRID, LOSING_GRID, SIX_WOLVES_GRID, TEST_GAME_ID, THREE_BOOKS_GRID, make_raw_config
)

GRID_TARGET = 'snowkingdom_be.services.play_service.generate_spin_grid'


class BaseTestCase(unittest.TestCase):
    """
    Fresh app, in-memory database and session store for each test method,
    playing the small test game from a temporary configuration directory.
    """

    @classmethod
    def setUpClass(cls):
        cls.config_dir = tempfile.mkdtemp()
        game_dir = os.path.join(cls.config_dir, TEST_GAME_ID)
        os.makedirs(game_dir)
        with open(os.path.join(game_dir, "gameConfig.json"), "w", encoding="utf-8") as f:
            json.dump(make_raw_config(), f)

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.config_dir, ignore_errors=True)

    def setUp(self):
        config_dir = self.config_dir

        class ApiTestingConfig(TestingConfig):
            GAME_CONFIG_DIR = config_dir
            DEFAULT_GAME_ID = TEST_GAME_ID

        GameConfigManager.clear_cache()
        self.app = create_app(ApiTestingConfig)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.drop_all()
        db.create_all()
        self.client = self.app.test_client()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def _play(self, grid, session_id="player-1", **body):
        body.setdefault('betAmount', 1.00)
        body['sessionId'] = session_id
        with patch(GRID_TARGET, return_value=[list(reel) for reel in grid]):
            return self.client.post('/play', json=body)

    def _seed_session(self, session_id="player-1", **fields):
        store = self.app.session_store
        store.save(session_id, store.get_or_create(session_id).evolve(**fields))


class TestPlayEndpoint(BaseTestCase):

    def test_play_winning_spin(self):
        response = self._play(A_THREE_GRID)
        self.assertEqual(response.status_code, 200)
        data = response.get_json()

        self.assertEqual(data['sessionId'], "player-1")
        self.assertEqual(data['spinType'], "normal")
        self.assertEqual(data['player']['balance'], 1004.0)
        self.assertEqual(data['player']['lastWin'], 5.0)
        results = data['player']['results']
        self.assertEqual(results['totalWin'], 5.0)
        self.assertEqual(results['winningLines'], [
            {'paylineIndex': 0, 'symbol': "A", 'count': 3, 'payout': 5.0, 'line': [1, 1, 1, 1, 1]}
        ])
        self.assertEqual(results['grid'], A_THREE_GRID)
        self.assertEqual(data['game'], data['player'])
        self.assertEqual(data['mysteryPrizeAwarded'], 0.0)

    def test_play_triggers_free_spins(self):
        data = self._play(THREE_BOOKS_GRID).get_json()
        self.assertEqual(data['freeSpins'], 10)
        self.assertEqual(data['freeSpinsAwarded'], 10)
        self.assertIn(data['featureSymbol'], ("Queen", "Wolf"))
        self.assertTrue(data['player']['results']['scatterWin']['triggeredFreeSpins'])

        data = self._play(LOSING_GRID, betAmount=0).get_json()
        self.assertEqual(data['spinType'], "free")
        self.assertEqual(data['freeSpins'], 9)
        self.assertEqual(data['accumulatedPennyGameBets'], 0.1)

    def test_per_line_bet(self):
        response = self._play(A_THREE_GRID, betAmount=0, numPaylines=5, betPerPayline=0.20)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['totalBet'], 1.0)

    def test_invalid_bet(self):
        response = self._play(A_THREE_GRID, betAmount=1.5)
        self.assertEqual(response.status_code, 400)
        data = response.get_json()
        self.assertFalse(data['status'])
        self.assertEqual(data['error_code'], ErrorCodes.INVALID_BET)
        self.assertEqual(data['details']['allowedBets'], [1.0, 2.0])
        self.assertEqual(self.app.session_store.get("player-1").balance, Decimal('1000.00'))

    def test_missing_session_id(self):
        response = self.client.post('/play', json={'betAmount': 1.0})
        self.assertEqual(response.status_code, 422)
        data = response.get_json()
        self.assertEqual(data['error_code'], ErrorCodes.VALIDATION_ERROR)
        self.assertIn('sessionId', data['details']['errors'])

    def test_insufficient_funds(self):
        self._seed_session(balance=Decimal('0.50'))
        response = self._play(A_THREE_GRID)
        self.assertEqual(response.status_code, 400)
        data = response.get_json()
        self.assertEqual(data['error_code'], ErrorCodes.INSUFFICIENT_FUNDS)
        self.assertEqual(data['details']['currentBalance'], 0.5)

    def test_unknown_game(self):
        response = self._play(A_THREE_GRID, gameId="Atlantis")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()['error_code'], ErrorCodes.GAME_NOT_FOUND)
        self.assertIsNone(self.app.session_store.get("player-1"))

    def test_action_game_play_without_credits(self):
        response = self._play(LOSING_GRID, actionGameSpins=1)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['error_code'], ErrorCodes.NO_ACTION_GAME_SPINS)

    def test_history_failure_does_not_fail_play(self):
        with patch.object(SpinHistoryRecorder, '_write', side_effect=RuntimeError("boom")):
            response = self._play(A_THREE_GRID)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['player']['balance'], 1004.0)

    def test_spin_forwarded_to_rgs(self):
        with patch.object(self.app.rgs_service, 'send_spin_data') as mock_send:
            self._play(SIX_WOLVES_GRID)
        mock_send.assert_called_once()
        session_id, game_id, payload = mock_send.call_args[0]
        self.assertEqual((session_id, game_id), ("player-1", TEST_GAME_ID))
        self.assertEqual(payload['actionGameSpins'], 3)
        self.assertEqual(payload['game']['mode'], 0)
        self.assertEqual(payload['player']['balance'], 999.4)


class TestActionGameEndpoint(BaseTestCase):

    def test_unknown_session(self):
        response = self.client.post('/action-game/spin', json={'sessionId': "ghost"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()['error_code'], ErrorCodes.SESSION_NOT_FOUND)

    def test_no_credits(self):
        self._seed_session()
        response = self.client.post('/action-game/spin', json={'sessionId': "player-1"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['error_code'], ErrorCodes.NO_ACTION_GAME_SPINS)

    def test_wheel_spin(self):
        self._play(SIX_WOLVES_GRID)
        response = self.client.post('/action-game/spin', json={'sessionId': "player-1"})
        self.assertEqual(response.status_code, 200)
        data = response.get_json()

        self.assertIn(data['result']['wheelResult'], ("0", "R10", "6spins"))
        self.assertEqual(data['remainingSpins'], 3 - 1 + data['result']['additionalSpins'])
        self.assertAlmostEqual(data['balance'], 999.4 + data['result']['win'], places=2)
        self.assertEqual(data['totalActionSpins'], data['remainingSpins'])


class TestSessionEndpoints(BaseTestCase):

    def test_get_session_creates_default(self):
        response = self.client.get('/session/new-player')
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['player']['balance'], 1000.0)
        self.assertEqual(data['freeSpins'], 0)
        self.assertIsNone(data['player']['results'])

    def test_reset_session(self):
        self._play(A_THREE_GRID)
        response = self.client.post('/session/player-1/reset')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {'message': 'Session reset successfully'})

        data = self.client.get('/session/player-1').get_json()
        self.assertEqual(data['player']['balance'], 1000.0)
        self.assertEqual(data['player']['gameId'], TEST_GAME_ID)


class TestHistoryEndpoints(BaseTestCase):

    def test_history_and_summary(self):
        self.assertEqual(self.client.get('/game/sessions/player-1').status_code, 404)

        self._play(A_THREE_GRID)
        self._play(LOSING_GRID)

        history = self.client.get('/game/sessions/player-1/history?limit=1').get_json()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]['totalWin'], 0.0)

        summary = self.client.get('/game/sessions/player-1').get_json()
        self.assertEqual(summary['numSpins'], 2)
        self.assertEqual(summary['totalBet'], 2.0)

    def test_history_limit_validated(self):
        response = self.client.get('/game/sessions/player-1/history?limit=0')
        self.assertEqual(response.status_code, 422)

    def test_stats(self):
        self._play(A_THREE_GRID)
        stats = self.client.get('/game/stats').get_json()
        self.assertEqual(stats['totalSpins'], 1)
        self.assertEqual(stats['totalWin'], 5.0)


class TestErrorHandlers(BaseTestCase):

    def test_unknown_route(self):
        response = self.client.get('/no/such/route')
        self.assertEqual(response.status_code, 404)
        data = response.get_json()
        self.assertEqual(data['error_code'], ErrorCodes.NOT_FOUND)
        self.assertEqual(data['details']['path'], '/no/such/route')

    def test_method_not_allowed(self):
        response = self.client.get('/play')
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.get_json()['error_code'], ErrorCodes.METHOD_NOT_ALLOWED)

    def test_request_id_header(self):
        response = self.client.get('/session/abc')
        self.assertTrue(response.headers.get('X-Request-ID'))
        self.assertEqual(response.headers.get('X-Content-Type-Options'), 'nosniff')


if __name__ == '__main__':
    unittest.main()
