#!/usr/bin/env python3

#(c) 2022 by the dsk2woz authors
#license:MIT

import argparse
import dsk2woz
import bitarray # https://pypi.org/project/bitarray/
import struct
import sys

def bits_of(values):
    bits = bitarray.bitarray(endian="big")
    bits.frombytes(bytes(values))
    return bits

kAddressPrologue = bits_of(dsk2woz.kAddressPrologue)
kDataPrologue = bits_of(dsk2woz.kDataPrologue)
kEpilogue = bits_of(dsk2woz.kEpilogue[:2])
kDataSearchWindow = 100 * 8 # bits after an address field to look for its data field
tNibbleToValue = {n: i for i, n in enumerate(dsk2woz.t6and2)}

class Apple2Track(dsk2woz.Track):
    def __init__(self, raw_bytes, raw_count):
        dsk2woz.Track.__init__(self, raw_bytes, raw_count)
        self.bits = bits_of(raw_bytes)
        del self.bits[raw_count:]

    def search(self, pattern, start=0, stop=None):
        """yields bit offsets of |pattern| at or after |start|"""
        bits = self.bits[start:stop]
        for offs in bits.search(pattern):
            yield start + offs

    def read(self, offs, count):
        """returns |count| whole bytes starting at bit offset |offs|"""
        return self.bits[offs:offs + count * 8].tobytes()

class AddressField:
    def __init__(self, valid, volume, track_id, sector_id):
        self.valid = valid
        self.volume = volume
        self.track_id = track_id
        self.sector_id = sector_id

class DataField:
    def __init__(self, valid):
        self.valid = valid

class Sector:
    def __init__(self, address_field, data_field):
        self.address_field = address_field
        self.data_field = data_field

def address_field_at_point(track, offs):
    raw = track.read(offs, 8)
    if len(raw) != 8:
        return None
    volume, track_id, sector_id, checksum = ((x & x >> 7) & 0xFF for x in struct.unpack(">4H", raw))
    valid = volume ^ track_id ^ sector_id == checksum
    return AddressField(valid, volume, track_id, sector_id)

def data_field_at_point(track, offs):
    """checks the 6-and-2 checksum of the data field at |offs| (just after
    its prologue); raises KeyError if a nibble is not a valid disk byte"""
    raw = track.read(offs, dsk2woz.kEncodedSectorSize)
    if len(raw) != dsk2woz.kEncodedSectorSize:
        return DataField(False)
    checksum = 0
    for nibble in raw:
        checksum ^= tNibbleToValue[nibble]
    return DataField(checksum == 0)

def scan_track(track, track_num, logger):
    """returns list of Sectors found in the track, logging anything unexpected"""
    sectors = []
    seen_sectors = []
    for offs in track.search(kAddressPrologue):
        offs += len(kAddressPrologue)
        address_field = address_field_at_point(track, offs)
        if not address_field:
            logger.warn('T{T} Address field truncated', T=track_num)
            break

        # log if address field checksum doesn't match
        if not address_field.valid:
            logger.warn('T{T},S{S} Address field checksum invalid',
                        T=address_field.track_id, S=address_field.sector_id)
            continue

        # log if address field claims to be on some other track
        if address_field.track_id != track_num:
            logger.warn('T{T} Address field track ID {X} does not match',
                        T=track_num, X=address_field.track_id)
            continue

        # log if sector ID is ridiculous
        if address_field.sector_id >= dsk2woz.kSectorsPerTrack:
            logger.warn('T{T} Address field sector ID {X} invalid',
                        T=track_num, X=address_field.sector_id)
            continue

        offs += 8 * 8
        if track.read(offs, 2) != kEpilogue.tobytes():
            logger.warn('T{T},S{S} Address field epilogue invalid',
                        T=track_num, S=address_field.sector_id)
            continue

        # if we see duplicate sector IDs, assume we're done
        if address_field.sector_id in seen_sectors: break
        seen_sectors.append(address_field.sector_id)

        data_offs = next(track.search(kDataPrologue, offs, offs + kDataSearchWindow), None)
        if data_offs is None:
            logger.warn('T{T},S{S} Data field not found',
                        T=track_num, S=address_field.sector_id)
            sectors.append(Sector(address_field, DataField(False)))
            continue
        data_offs += len(kDataPrologue)

        try:
            data_field = data_field_at_point(track, data_offs)
        except KeyError:
            logger.warn('T{T},S{S} Data field contains invalid nibble',
                        T=track_num, S=address_field.sector_id)
            data_field = DataField(False)
        else:
            if not data_field.valid:
                logger.warn('T{T},S{S} Data field checksum invalid',
                            T=track_num, S=address_field.sector_id)
            elif track.read(data_offs + dsk2woz.kEncodedSectorSize * 8, 2) != kEpilogue.tobytes():
                logger.warn('T{T},S{S} Data field epilogue invalid',
                            T=track_num, S=address_field.sector_id)
                data_field.valid = False
        sectors.append(Sector(address_field, data_field))

    # log if we didn't find enough sectors
    if len(seen_sectors) < dsk2woz.kSectorsPerTrack:
        logger.warn('T{T} Found {X} sectors (expected {Y})',
                    T=track_num, X=len(seen_sectors), Y=dsk2woz.kSectorsPerTrack)
    return sectors

class ScannedDiskImage(dsk2woz.WozImage):
    def __init__(self, iostream=None, loggerclass=dsk2woz.DefaultLogger):
        dsk2woz.WozImage.__init__(self, iostream)
        self.logger = loggerclass()
        for i, t in enumerate(self.tracks):
            self.tracks[i] = Apple2Track(t.raw_bytes, t.raw_count)
        self.parse()

    def parse(self):
        self.sectors = {}
        # only whole tracks of 5.25-inch disks
        if self.info.get("disk_type") != 1: return
        for track_num in range(dsk2woz.kQuarterTracks // 4):
            track = self.seek(track_num)
            if not track: continue
            self.sectors[track_num] = scan_track(track, track_num, self.logger)

    def is_clean(self):
        return all(len(sectors) == dsk2woz.kSectorsPerTrack and
                   all(s.data_field.valid for s in sectors)
                   for sectors in self.sectors.values())

def driver(filename, loggerclass=dsk2woz.DefaultLogger):
    with open(filename, 'rb') as f:
        disk = ScannedDiskImage(f, loggerclass)
    disk.logger.info('{X} tracks scanned', X=len(disk.sectors))
    if not disk.is_clean():
        return 1
    return 0

def parse_args(args):
    parser = argparse.ArgumentParser(prog="nibscan",
                                     description="""Scan the address and data fields of every track in a 16-sector .woz disk image.""")
    parser.add_argument("-v", "--version", action="version", version=dsk2woz.__displayname__)
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="only print problems")
    parser.add_argument("file", help=".woz disk image")
    return parser.parse_args(args)

def main(args=None):
    args = parse_args(sys.argv[1:] if args is None else args)
    loggerclass = args.quiet and dsk2woz.QuietLogger or dsk2woz.DefaultLogger
    try:
        return driver(args.file, loggerclass)
    except OSError:
        loggerclass().error("ERROR: could not open {X} for reading", X=args.file)
        return dsk2woz.kExitInput
    except dsk2woz.WozError as e:
        loggerclass().error("ERROR: {X} is not a valid .woz file ({Y})", X=args.file, Y=e)
        return dsk2woz.kExitInput

if __name__ == '__main__':
    sys.exit(main())
