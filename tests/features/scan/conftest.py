import pytest

from scan_fakes import BARE_HTML, HOME_HTML


@pytest.fixture
def home_html():
    return HOME_HTML


@pytest.fixture
def bare_html():
    return BARE_HTML
