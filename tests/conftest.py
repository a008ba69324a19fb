"""
Shared pytest fixtures for SIE converter tests.
"""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent

# Repo-root modules and the web app live outside any package.
sys.path.insert(0, str(REPO_ROOT))
sys.path.insert(0, str(REPO_ROOT / "web"))


SAMPLE_SIE = """#FLAGGA 0
#PROGRAM "Visma Administration" 2021.1
#FORMAT PC8
#GEN 20210310 "Anna"
#SIETYP 4
#FNR 1234
#ORGNR 556000-0000
#ADRESS "Anna Andersson" "Storgatan 1" "111 22 Stockholm" "08-123456"
#FNAMN "Övningsbolaget AB"
#RAR 0 20210101 20211231
#RAR -1 20200101 20201231
#TAXAR 2022
#VALUTA SEK
#KPTYP BAS2014
#KONTO 1060 Hyresrätt
#KONTO 1910 Kassa
#KONTO 3041 "Försäljning tjänst 25%"
#KONTO 7010 "Löner till tjänstemän"
#KTYP 1060 T
#KTYP 3041 I
#SRU 1060 7201
#DIM 1 Resultatenhet
#OBJEKT 1 Nord "Kontor Nord"
#IB 0 1910 421457.53
#IB -1 1910 300000.00
#UB 0 1910 518057.53 12
#RES 0 3041 -1690380.20
; exported for testing
#VER A 1 20210105 "Kaffebröd" 20210310
{
#TRANS 1910 {} -195.00
#TRANS 7010 {1 Nord} 30962.80 20210123 "" 216
#TRANS 3041 {1 Nord} -3550.00
}
#VER B 2 20210104 "Hyra"
{
#TRANS 1910 {} 100
}
"""


@pytest.fixture
def sample_sie_text():
    """Provide a small but complete SIE 4 export."""
    return SAMPLE_SIE


@pytest.fixture
def sample_sie_bytes():
    """Provide the sample export encoded the way exporters write it (PC8)."""
    return SAMPLE_SIE.encode("cp437")


@pytest.fixture
def sample_sie_file(tmp_path, sample_sie_bytes):
    """Write the sample export to a .se file."""
    path = tmp_path / "bokslut.se"
    path.write_bytes(sample_sie_bytes)
    return path
