#!/usr/bin/env python3

import dsk2woz
import nibscan
import pytest # https://pypi.org/project/pytest/
import io

kPatternedDsk = bytes(range(256)) * 560

def encoded_track(track_number=0, src=bytes(4096)):
    track = bytearray(dsk2woz.kTrackSize)
    raw_count = dsk2woz.encode_track(track, src, track_number, dsk2woz.kDOS33)
    return track, raw_count

@pytest.fixture(scope="module")
def patterned_woz():
    return dsk2woz.encode_disk(kPatternedDsk)

def test_scan_disk(patterned_woz, capsys):
    disk = nibscan.ScannedDiskImage(io.BytesIO(patterned_woz))
    assert capsys.readouterr().err == ""
    assert sorted(disk.sectors) == list(range(35))
    for track_num, sectors in disk.sectors.items():
        assert [s.address_field.sector_id for s in sectors] == list(range(16))
        for sector in sectors:
            assert sector.address_field.valid
            assert sector.address_field.volume == dsk2woz.kVolumeNumber
            assert sector.address_field.track_id == track_num
            assert sector.data_field.valid
    assert disk.is_clean()

def test_scan_track_bad_data(capsys):
    track, raw_count = encoded_track()
    # flip one bit in the middle of physical sector 0's data field
    track[200] ^= 0x01
    sectors = nibscan.scan_track(nibscan.Apple2Track(track, raw_count), 0, dsk2woz.DefaultLogger())
    assert len(sectors) == 16
    assert not sectors[0].data_field.valid
    assert all(s.data_field.valid for s in sectors[1:])
    assert "T00,S00 Data field" in capsys.readouterr().err

def test_scan_track_wrong_track(capsys):
    track, raw_count = encoded_track(5)
    sectors = nibscan.scan_track(nibscan.Apple2Track(track, raw_count), 0, dsk2woz.DefaultLogger())
    assert sectors == []
    err = capsys.readouterr().err
    assert "T00 Address field track ID 5 does not match" in err
    assert "T00 Found 0 sectors (expected 16)" in err

def test_scan_track_short(capsys):
    track, raw_count = encoded_track()
    # stop just before the 9th address field
    raw_count = dsk2woz.kLeaderSyncBits + 8 * 3134
    sectors = nibscan.scan_track(nibscan.Apple2Track(track, raw_count), 0, dsk2woz.DefaultLogger())
    assert [s.address_field.sector_id for s in sectors] == list(range(8))
    assert "T00 Found 8 sectors (expected 16)" in capsys.readouterr().err

def test_apple2_track():
    track, raw_count = encoded_track()
    a2track = nibscan.Apple2Track(track, raw_count)
    assert len(a2track.bits) == raw_count
    assert a2track.read(0, 1) == b"\xFF"
    offsets = list(a2track.search(nibscan.kAddressPrologue))
    assert len(offsets) == 16
    assert offsets[0] == dsk2woz.kLeaderSyncBits
    assert list(a2track.search(nibscan.kAddressPrologue, offsets[1])) == offsets[1:]

def test_driver(tmp_path, capsys):
    inputfile = str(tmp_path / "disk.dsk")
    outputfile = str(tmp_path / "disk.woz")
    with open(inputfile, "wb") as f:
        f.write(kPatternedDsk)
    assert dsk2woz.main(["-q", inputfile, outputfile]) == dsk2woz.kExitOK
    assert nibscan.driver(outputfile) == 0
    assert "35 tracks scanned" in capsys.readouterr().err

def test_driver_bad_track(tmp_path, patterned_woz, capsys):
    woz = bytearray(patterned_woz)
    # flip a bit in track 2's first data field and clear the CRC so it still loads
    woz[8:12] = bytes(4)
    woz[1536 + 2 * 6656 + 200] ^= 0x01
    outputfile = str(tmp_path / "bad.woz")
    with open(outputfile, "wb") as f:
        f.write(woz)
    assert nibscan.driver(outputfile) == 1
    assert "T02,S00 Data field" in capsys.readouterr().err

def test_command(tmp_path, patterned_woz, capsys):
    outputfile = str(tmp_path / "disk.woz")
    with open(outputfile, "wb") as f:
        f.write(patterned_woz)
    assert nibscan.main([outputfile]) == 0
    assert "35 tracks scanned" in capsys.readouterr().err
    assert nibscan.main(["-q", outputfile]) == 0
    assert capsys.readouterr().err == ""

def test_command_bad_input(tmp_path, capsys):
    assert nibscan.main([str(tmp_path / "missing.woz")]) == dsk2woz.kExitInput
    assert "could not open" in capsys.readouterr().err

    notwoz = str(tmp_path / "disk.dsk")
    with open(notwoz, "wb") as f:
        f.write(kPatternedDsk)
    assert nibscan.main([notwoz]) == dsk2woz.kExitInput
    assert "is not a valid .woz file" in capsys.readouterr().err
