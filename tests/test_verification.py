from unittest import mock

from zodiac_mint.verification import ExpiringCache, VerificationService, poll_verification


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_cache_entry_expires_on_read():
    clock = Clock()
    cache = ExpiringCache(ttl=3600, clock=clock)
    cache.set('alice', 1)

    clock.now += 3599
    assert cache.get('alice') == 1

    clock.now += 1
    assert cache.get('alice') is None
    assert len(cache) == 0


def test_cache_pop():
    cache = ExpiringCache(ttl=10)
    cache.set('k', 'v')

    assert cache.pop('k') == 'v'
    assert 'k' not in cache


def test_verification_is_case_insensitive():
    service = VerificationService(ExpiringCache(ttl=60))
    service.record('0xABC', '1990-08-15')

    assert service.check('0xabc') == {'verified': True, 'date_of_birth': '1990-08-15'}
    assert service.check('0xdef') == {'verified': False}


def test_verification_expires():
    clock = Clock()
    service = VerificationService(ExpiringCache(ttl=3600, clock=clock))
    service.record('user', '1990-08-15')

    clock.now += 7200

    assert service.check('user') == {'verified': False}


def test_poll_until_verified():
    check = mock.Mock(side_effect=[{'verified': False}, {'verified': False},
                                   {'verified': True, 'date_of_birth': '1990-08-15'}])
    sleep = mock.Mock()

    result = poll_verification(check, interval=2.0, sleep=sleep)

    assert result['date_of_birth'] == '1990-08-15'
    assert check.call_count == 3
    sleep.assert_called_with(2.0)
    assert sleep.call_count == 2


def test_poll_gives_up():
    check = mock.Mock(return_value={'verified': False})
    sleep = mock.Mock()

    assert poll_verification(check, max_attempts=150, sleep=sleep) is None
    assert check.call_count == 150
    assert sleep.call_count == 149
