#!/usr/bin/env python3

#(c) 2022 by the dsk2woz authors
#license:MIT

import argparse
import collections
import io
import os
import sys

__version__ = "1.0.0" # https://semver.org
__date__ = "2022-10-17"
__progname__ = "dsk2woz"
__displayname__ = __progname__ + " " + __version__ + " (" + __date__ + ")"

# disk geometry (16-sector 5.25-inch disks only)
kTracksPerDisk = 35
kSectorsPerTrack = 16
kBytesPerSector = 256
kBytesPerTrack = kSectorsPerTrack * kBytesPerSector
kDskImageSize = kTracksPerDisk * kBytesPerTrack

# domain-specific constants defined in .woz specifications
kWOZ2 = b"WOZ2"
kINFO = b"INFO"
kTMAP = b"TMAP"
kTRKS = b"TRKS"
kWRIT = b"WRIT"
kHeaderSize = 12
kChunkHeaderSize = 8
kInfoSize = 60
kBlockSize = 512
kBlocksPerTrack = 13
kTrackSize = kBlocksPerTrack * kBlockSize
kTrackBitCapacity = kTrackSize * 8
kQuarterTracks = 160
kTRKSize = 8
kBitsOffset = kQuarterTracks * kTRKSize # BITS always start after all 160 TRK entries
kFirstTrackBlock = 3
kWRITHeaderSize = 8
kWRITCommandSize = 12

# track format
kVolumeNumber = 254
kLeaderSyncCount = 64
kAddressSyncCount = 7
kSectorGapSyncCount = 16
kSyncBitCount = 10
kLeaderSyncBits = kLeaderSyncCount * kSyncBitCount
kSyncNibble = 0xFF
kTrackTerminator = 0xFF
kEncodedSectorSize = 343
kAddressPrologue = (0xD5, 0xAA, 0x96)
kDataPrologue = (0xD5, 0xAA, 0xAD)
kEpilogue = (0xDE, 0xAA, 0xEB)

# sector formats (how logical sectors are ordered in the input image)
kDOS33 = "dos"
kProDOS = "prodos"
tSectorFormats = (kDOS33, kProDOS)
tSectorFormatName = {kDOS33: "DOS 3.3", kProDOS: "ProDOS"}
tInterleaveMultiplier = {kDOS33: 7, kProDOS: 8}

# INFO chunk values
kInfoVersion = 2
kDiskType525 = 1
kBootSectorFormat16 = 1
kOptimalBitTiming = 32 # 4 microseconds
tDefaultCreator = (__progname__ + " " + __version__)[:32]

# process exit codes
kExitOK = 0
kExitUsage = 2 # argparse exits with this on its own
kExitInput = 3
kExitMemory = 4
kExitOutput = 5
kExitInternal = 6

# 6-bit value -> disk nibble
t6and2 = (
    0x96, 0x97, 0x9A, 0x9B, 0x9D, 0x9E, 0x9F, 0xA6,
    0xA7, 0xAB, 0xAC, 0xAD, 0xAE, 0xAF, 0xB2, 0xB3,
    0xB4, 0xB5, 0xB6, 0xB7, 0xB9, 0xBA, 0xBB, 0xBC,
    0xBD, 0xBE, 0xBF, 0xCB, 0xCD, 0xCE, 0xCF, 0xD3,
    0xD6, 0xD7, 0xD9, 0xDA, 0xDB, 0xDC, 0xDD, 0xDE,
    0xDF, 0xE5, 0xE6, 0xE7, 0xE9, 0xEA, 0xEB, 0xEC,
    0xED, 0xEE, 0xEF, 0xF2, 0xF3, 0xF4, 0xF5, 0xF6,
    0xF7, 0xF9, 0xFA, 0xFB, 0xFC, 0xFD, 0xFE, 0xFF)
tBitReverse2 = (0, 2, 1, 3)

# strings and things, for print routines and error messages
sEOF = "Unexpected EOF"
sBadChunkSize = "Bad chunk size"
tQuarters = (".00",".25",".50",".75")

# errors that may be raised
class DskError(Exception): pass # base class
class DskInputError(DskError): pass
class DskOutputError(DskError): pass
class DskSectorFormatError(DskError): pass
class DskInternalError(DskError): pass
class WozError(Exception): pass # base class
class WozCRCError(WozError): pass
class WozFormatError(WozError): pass
class WozEOFError(WozFormatError): pass
class WozHeaderError(WozFormatError): pass
class WozHeaderError_NoWOZMarker(WozHeaderError): pass
class WozHeaderError_NoFF(WozHeaderError): pass
class WozHeaderError_NoLF(WozHeaderError): pass
class WozINFOFormatError(WozFormatError): pass
class WozINFOFormatError_MissingINFOChunk(WozINFOFormatError): pass
class WozINFOFormatError_BadVersion(WozINFOFormatError): pass
class WozINFOFormatError_BadDiskType(WozINFOFormatError): pass
class WozINFOFormatError_BadCreator(WozINFOFormatError): pass
class WozTMAPFormatError(WozFormatError): pass
class WozTMAPFormatError_MissingTMAPChunk(WozTMAPFormatError): pass
class WozTMAPFormatError_BadTRKS(WozTMAPFormatError): pass
class WozTRKSFormatError(WozFormatError): pass
class WozTRKSFormatError_BadStartingBlock(WozTRKSFormatError): pass
class WozTRKSFormatError_BadBlockCount(WozTRKSFormatError): pass
class WozTRKSFormatError_BadBitCount(WozTRKSFormatError): pass
class WozWRITFormatError(WozFormatError): pass

def from_uint32(b):
    return int.from_bytes(b, byteorder="little")
from_uint16=from_uint32
from_uint8=from_uint32

def to_uint32(b):
    return b.to_bytes(4, byteorder="little")

def to_uint16(b):
    return b.to_bytes(2, byteorder="little")

def to_uint8(b):
    return b.to_bytes(1, byteorder="little")

def raise_if(cond, e, s=""):
    if cond: raise e(s)

def myhex(b):
    return hex(b)[2:].rjust(2, "0").upper()

class DefaultLogger:
    def warn(self, message, T=None, S=None, X=None, Y=None):
        if T is not None: T = myhex(T)
        if S is not None: S = myhex(S)
        message = message.format(T=T, S=S, X=X, Y=Y)
        sys.stderr.write(message)
        sys.stderr.write('\n')
    info=warn
    error=warn

class QuietLogger(DefaultLogger):
    def info(self, message, **kwargs):
        pass

#---------- bitstream writing ----------

def bits_write(buffer, bit_index, value, bit_count=8):
    """ORs the low |bit_count| bits of |value| into |buffer|, most
    significant bit first, starting |bit_index| bits into the buffer.
    Bits are numbered MSB-first within each byte. Target bits must
    already be 0. Returns the bit index following the last bit written."""
    if bit_index < 0 or bit_index + bit_count > len(buffer) * 8:
        raise DskInternalError("Writing %d bits at bit %d overruns a %d-bit buffer" % (bit_count, bit_index, len(buffer) * 8))
    shift = bit_index & 7
    byte_position = bit_index >> 3
    span = (shift + bit_count + 7) // 8
    value = (value & ((1 << bit_count) - 1)) << (span * 8 - shift - bit_count)
    for i, b in enumerate(value.to_bytes(span, byteorder="big")):
        buffer[byte_position + i] |= b
    return bit_index + bit_count

def bits_write_byte(buffer, bit_index, value):
    return bits_write(buffer, bit_index, value, 8)

def bits_write_bytes(buffer, bit_index, values):
    for value in values:
        bit_index = bits_write_byte(buffer, bit_index, value)
    return bit_index

def bits_write_sync(buffer, bit_index):
    """writes one 10-bit sync nibble (0xFF followed by two 0 bits)"""
    bit_index = bits_write_byte(buffer, bit_index, kSyncNibble)
    # the trailing 0 bits are already 0, so this only moves the index along
    return bits_write(buffer, bit_index, 0, kSyncBitCount - 8)

def encode_4_and_4(value):
    return bytes(((value >> 1) | 0xAA, value | 0xAA))

def bits_write_4_and_4(buffer, bit_index, value):
    return bits_write_bytes(buffer, bit_index, encode_4_and_4(value))

#---------- sector and track encoding ----------

def encode_6_and_2(src):
    """encodes a 256-byte sector as 343 disk nibbles"""
    raise_if(len(src) != kBytesPerSector, DskInternalError,
             "Sector is %d bytes (expected %d)" % (len(src), kBytesPerSector))
    dest = bytearray(kEncodedSectorSize)

    # first 86 bytes hold the bottom two bits of every source byte
    # (bit-swapped), three source bytes to each except the last two
    for c in range(86):
        dest[c] = tBitReverse2[src[c] & 3] | (tBitReverse2[src[c + 86] & 3] << 2)
        if c + 172 < kBytesPerSector:
            dest[c] |= tBitReverse2[src[c + 172] & 3] << 4

    # next 256 bytes hold the top six bits
    for c in range(kBytesPerSector):
        dest[86 + c] = src[c] >> 2

    # each byte is stored XORed with the one before it, and the last
    # value is repeated as the checksum
    dest[342] = dest[341]
    for location in range(341, 0, -1):
        dest[location] ^= dest[location - 1]

    return bytes(t6and2[b] for b in dest)

def logical_sector(physical_sector, sector_format):
    """returns the logical sector stored in the given physical sector"""
    if physical_sector == 0x0F:
        return 0x0F
    return (physical_sector * tInterleaveMultiplier[sector_format]) % 15

def interleave(sector_format):
    raise_if(sector_format not in tSectorFormats, DskSectorFormatError,
             "Unknown sector format %s (expected one of %s)" % (sector_format, ", ".join(tSectorFormats)))
    return tuple(logical_sector(s, sector_format) for s in range(kSectorsPerTrack))

def encode_track(dest, src, track_number, sector_format):
    """encodes one track's worth of logical sectors (|src|, 4096 bytes) as
    a bitstream in |dest| (6656 bytes), returns count of valid bits"""
    raise_if(len(dest) != kTrackSize, DskInternalError,
             "Track buffer is %d bytes (expected %d)" % (len(dest), kTrackSize))
    raise_if(len(src) != kBytesPerTrack, DskInternalError,
             "Track data is %d bytes (expected %d)" % (len(src), kBytesPerTrack))
    sector_map = interleave(sector_format)
    dest[:] = bytes(kTrackSize)
    bit_index = 0

    for i in range(kLeaderSyncCount):
        bit_index = bits_write_sync(dest, bit_index)

    # sectors go out in physical order
    for s in range(kSectorsPerTrack):
        # address field
        bit_index = bits_write_bytes(dest, bit_index, kAddressPrologue)
        bit_index = bits_write_4_and_4(dest, bit_index, kVolumeNumber)
        bit_index = bits_write_4_and_4(dest, bit_index, track_number)
        bit_index = bits_write_4_and_4(dest, bit_index, s)
        bit_index = bits_write_4_and_4(dest, bit_index, kVolumeNumber ^ track_number ^ s)
        bit_index = bits_write_bytes(dest, bit_index, kEpilogue)

        for i in range(kAddressSyncCount):
            bit_index = bits_write_sync(dest, bit_index)

        # data field
        logical = sector_map[s]
        bit_index = bits_write_bytes(dest, bit_index, kDataPrologue)
        bit_index = bits_write_bytes(dest, bit_index,
                                     encode_6_and_2(src[logical * kBytesPerSector:(logical + 1) * kBytesPerSector]))
        bit_index = bits_write_bytes(dest, bit_index, kEpilogue)

        if s < kSectorsPerTrack - 1:
            for i in range(kSectorGapSyncCount):
                bit_index = bits_write_sync(dest, bit_index)
        else:
            bit_index = bits_write_byte(dest, bit_index, kTrackTerminator)

    # everything after this stays 0 and pads the track out to a whole block
    return bit_index

#---------- CRC ----------

def _make_crc32_table():
    table = []
    for n in range(256):
        c = n
        for k in range(8):
            if c & 1:
                c = 0xEDB88320 ^ (c >> 1)
            else:
                c >>= 1
        table.append(c)
    return tuple(table)

tCRC32 = _make_crc32_table()

def crc32(data, crc=0):
    """CRC-32 of |data|; pass a previous result as |crc| to continue it"""
    crc ^= 0xFFFFFFFF
    for b in data:
        crc = tCRC32[(crc ^ b) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF

#---------- chunks ----------

class Chunk:
    def __init__(self, chunk_id, data):
        self.chunk_id = chunk_id
        self.data = bytes(data)

    def __len__(self):
        """size of the serialized chunk, including its 8-byte header"""
        return kChunkHeaderSize + len(self.data)

    def __bytes__(self):
        dest = bytearray(len(self))
        self.serialize(dest)
        return bytes(dest)

    def serialize(self, dest, offset=0):
        """writes the chunk into |dest| at |offset|, returns bytes written"""
        end = offset + len(self)
        raise_if(end > len(dest), DskInternalError,
                 "%s chunk does not fit (needs %d bytes, %d available)" % (self.chunk_id.decode(), len(self), len(dest) - offset))
        dest[offset:offset+4] = self.chunk_id # chunk ID
        dest[offset+4:offset+8] = to_uint32(len(self.data)) # chunk size
        dest[offset+8:end] = self.data
        return len(self)

def encode_info_creator(creator_as_string):
    creator_as_bytes = creator_as_string.encode("UTF-8")[:32]
    # drop any partial character left at the end by truncation
    creator_as_bytes = creator_as_bytes.decode("UTF-8", "ignore").encode("UTF-8")
    return creator_as_bytes.ljust(32, b" ")

def create_info_chunk(creator=tDefaultCreator):
    chunk = bytearray()
    chunk.extend(to_uint8(kInfoVersion)) # 1 byte, INFO version 2
    chunk.extend(to_uint8(kDiskType525)) # 1 byte, '1'=5.25 inch
    chunk.extend(to_uint8(0)) # 1 byte, write protected, '0'=no
    chunk.extend(to_uint8(0)) # 1 byte, synchronized, '0'=no
    chunk.extend(to_uint8(1)) # 1 byte, cleaned, '1'=yes
    chunk.extend(encode_info_creator(creator)) # 32 bytes, UTF-8 encoded string
    chunk.extend(to_uint8(1)) # 1 byte, disk sides
    chunk.extend(to_uint8(kBootSectorFormat16)) # 1 byte, '1'=16-sector
    chunk.extend(to_uint8(kOptimalBitTiming)) # 1 byte
    chunk.extend(to_uint16(0)) # 2 bytes, compatible hardware, '0'=unknown
    chunk.extend(to_uint16(0)) # 2 bytes, required RAM, '0'=unknown
    chunk.extend(to_uint16(kBlocksPerTrack)) # 2 bytes, largest track in blocks
    chunk.extend(b"\x00" * (kInfoSize-len(chunk))) # pad unused bytes
    return Chunk(kINFO, chunk)

def create_tmap_chunk():
    """each whole track is also readable a quarter track to either side;
    the .50 positions stay empty, and so does 34.75 so that we don't
    point at a 36th track"""
    chunk = bytearray()
    for t in range(kQuarterTracks):
        if t >= kTracksPerDisk * 4 - 1 or t % 4 == 2:
            chunk.append(0xFF)
        elif t % 4 == 3:
            chunk.append(t // 4 + 1)
        else:
            chunk.append(t // 4)
    return Chunk(kTMAP, chunk)

def create_trks_chunk(track_data, valid_bit_count):
    # starting_block is relative to the start of the file, so this depends
    # on INFO and TMAP being written (in that order) before TRKS
    raise_if(len(track_data) != kTracksPerDisk * kTrackSize, DskInternalError,
             "Track data is %d bytes (expected %d)" % (len(track_data), kTracksPerDisk * kTrackSize))
    trk_chunk = bytearray()
    starting_block = kFirstTrackBlock
    for i in range(kTracksPerDisk):
        trk_chunk.extend(to_uint16(starting_block))
        trk_chunk.extend(to_uint16(kBlocksPerTrack))
        trk_chunk.extend(to_uint32(valid_bit_count))
        starting_block += kBlocksPerTrack
    trk_chunk.extend(b"\x00" * (kBitsOffset - len(trk_chunk))) # unused TRK entries
    return Chunk(kTRKS, trk_chunk + track_data)

def create_writ_chunk(track_data, valid_bit_count):
    chunk = bytearray()
    length_for_crc = (valid_bit_count + 7) // 8
    for t in range(kTracksPerDisk):
        track_bits = memoryview(track_data)[t * kTrackSize:t * kTrackSize + length_for_crc]
        chunk.extend(to_uint8(t * 4)) # track to write (always the x.00)
        chunk.extend(to_uint8(1)) # 1 command in the write array
        chunk.extend(to_uint8(0)) # no additional flags
        chunk.extend(b"\x00") # reserved
        chunk.extend(to_uint32(crc32(track_bits))) # BITS checksum (includes the leader)
        chunk.extend(to_uint32(kLeaderSyncBits)) # start bit, skips the track leader
        chunk.extend(to_uint32(valid_bit_count - kLeaderSyncBits)) # bit count
        chunk.extend(to_uint8(kSyncNibble)) # leader nibble
        chunk.extend(to_uint8(kSyncBitCount)) # leader nibble bit count
        chunk.extend(to_uint8(0)) # leader count, 0 like Applesauce's own WOZ output
        chunk.extend(b"\x00") # reserved
    return Chunk(kWRIT, chunk)

#---------- container ----------

def dump_head(crc=0):
    chunk = bytearray()
    chunk.extend(kWOZ2) # magic bytes
    chunk.extend(b"\xFF\x0A\x0D\x0A") # more magic bytes
    chunk.extend(to_uint32(crc)) # CRC32 of rest of file (filled in later)
    return chunk

def assemble(chunks):
    """concatenates header and chunks and fills in the header CRC"""
    woz = bytearray(kHeaderSize + sum(map(len, chunks)))
    woz[:kHeaderSize] = dump_head()
    output_index = kHeaderSize
    for chunk in chunks:
        output_index += chunk.serialize(woz, output_index)
    raise_if(output_index != len(woz), DskInternalError, "Chunks filled %d of %d bytes" % (output_index, len(woz)))
    woz[8:12] = to_uint32(crc32(memoryview(woz)[kHeaderSize:]))
    return bytes(woz)

class WozWriter:
    def __init__(self, dsk, sector_format=kDOS33, creator=tDefaultCreator, loggerclass=DefaultLogger):
        raise_if(len(dsk) != kDskImageSize, DskInputError,
                 "Disk image is %d bytes (expected %d)" % (len(dsk), kDskImageSize))
        interleave(sector_format) # validates sector_format
        self.dsk = dsk
        self.sector_format = sector_format
        self.creator = creator
        self.logger = loggerclass()
        self.track_data = None
        self.valid_bit_count = None
        self.chunks = None

    def encode_tracks(self):
        """encodes all tracks up front since both TRKS and WRIT need them"""
        self.track_data = bytearray(kTracksPerDisk * kTrackSize)
        self.valid_bit_count = None
        tracks = memoryview(self.track_data)
        dsk = memoryview(self.dsk)
        for t in range(kTracksPerDisk):
            valid_bit_count = encode_track(tracks[t * kTrackSize:(t + 1) * kTrackSize],
                                           dsk[t * kBytesPerTrack:(t + 1) * kBytesPerTrack],
                                           t, self.sector_format)
            if self.valid_bit_count is None:
                self.valid_bit_count = valid_bit_count
            raise_if(valid_bit_count != self.valid_bit_count, DskInternalError,
                     "Track %d has %d valid bits (expected %d)" % (t, valid_bit_count, self.valid_bit_count))
        self.logger.info("Encoded {X} tracks, {Y} bits per track", X=kTracksPerDisk, Y=self.valid_bit_count)

    def build_chunks(self):
        if self.track_data is None:
            self.encode_tracks()
        self.chunks = [create_info_chunk(self.creator),
                       create_tmap_chunk(),
                       create_trks_chunk(self.track_data, self.valid_bit_count),
                       create_writ_chunk(self.track_data, self.valid_bit_count)]
        return self.chunks

    def __bytes__(self):
        return self.dump()

    def dump(self):
        """returns serialization of the disk image in bytes, suitable for writing to disk"""
        self.logger.info("Sector format: {X}", X=tSectorFormatName[self.sector_format])
        woz = assemble(self.build_chunks())
        self.logger.info("WOZ2 image is {X} bytes, CRC {Y}", X=len(woz), Y=woz[8:12][::-1].hex().upper())
        return woz

def encode_disk(dsk, sector_format=kDOS33, creator=tDefaultCreator, loggerclass=QuietLogger):
    return WozWriter(dsk, sector_format, creator, loggerclass).dump()

#---------- reading (structure only, used to check our own output) ----------

class Track:
    def __init__(self, raw_bytes, raw_count):
        self.raw_bytes = raw_bytes
        self.raw_count = raw_count

WritCommand = collections.namedtuple("WritCommand", "start_bit bit_count leader_nibble leader_bit_count leader_count")
WritEntry = collections.namedtuple("WritEntry", "track flags crc commands")

class WozImage:
    def __init__(self, iostream=None):
        self.reset()
        if iostream:
            self.load(iostream)

    def reset(self):
        self.info = collections.OrderedDict()
        self.tmap = [0xFF]*kQuarterTracks
        self.tracks = []
        self.writ = []
        self.crc = 0

    def load(self, iostream):
        self.reset()
        seen_info = False
        seen_tmap = False
        header_raw = iostream.read(8)
        raise_if(len(header_raw) != 8, WozEOFError, sEOF)
        self._load_header(header_raw)
        crc_raw = iostream.read(4)
        raise_if(len(crc_raw) != 4, WozEOFError, sEOF)
        self.crc = from_uint32(crc_raw)
        crc = 0
        while True:
            chunk_id = iostream.read(4)
            if not chunk_id: break
            raise_if(len(chunk_id) != 4, WozEOFError, sEOF)
            chunk_size_raw = iostream.read(4)
            raise_if(len(chunk_size_raw) != 4, WozEOFError, sEOF)
            chunk_size = from_uint32(chunk_size_raw)
            data = iostream.read(chunk_size)
            raise_if(len(data) != chunk_size, WozEOFError, sEOF)
            crc = crc32(data, crc32(chunk_size_raw, crc32(chunk_id, crc)))
            if chunk_id == kINFO:
                raise_if(chunk_size != kInfoSize, WozINFOFormatError, sBadChunkSize)
                self._load_info(data)
                seen_info = True
                continue
            raise_if(not seen_info, WozINFOFormatError_MissingINFOChunk, "Expected INFO chunk at offset 12")
            if chunk_id == kTMAP:
                raise_if(chunk_size != kQuarterTracks, WozTMAPFormatError, sBadChunkSize)
                self._load_tmap(data)
                seen_tmap = True
                continue
            raise_if(not seen_tmap, WozTMAPFormatError_MissingTMAPChunk, "Expected TMAP chunk at offset 80")
            if chunk_id == kTRKS:
                self._load_trks(data)
            elif chunk_id == kWRIT:
                self._load_writ(data)
        raise_if(not seen_info, WozINFOFormatError_MissingINFOChunk, "Expected INFO chunk at offset 12")
        raise_if(not seen_tmap, WozTMAPFormatError_MissingTMAPChunk, "Expected TMAP chunk at offset 80")
        for i, trk in enumerate(self.tmap):
            raise_if(trk != 0xFF and trk >= len(self.tracks), WozTMAPFormatError_BadTRKS, "Invalid TMAP entry: track %d%s points to non-existent TRKS chunk %d" % (i//4, tQuarters[i%4], trk))
        if self.crc:
            raise_if(self.crc != crc, WozCRCError, "Bad CRC")

    def _load_header(self, data):
        raise_if(data[:4] != kWOZ2, WozHeaderError_NoWOZMarker, "Magic string 'WOZ2' not present at offset 0")
        raise_if(data[4] != 0xFF, WozHeaderError_NoFF, "Magic byte 0xFF not present at offset 4")
        raise_if(data[5:8] != b"\x0A\x0D\x0A", WozHeaderError_NoLF, "Magic bytes 0x0A0D0A not present at offset 5")

    def _load_info(self, data):
        raise_if(data[0] < 2, WozINFOFormatError_BadVersion, "Unknown version (expected 2 or more, found %s)" % data[0])
        raise_if(data[1] not in (1, 2), WozINFOFormatError_BadDiskType, "Unknown disk type (expected 1 or 2, found %s)" % data[1])
        self.info["version"] = data[0]
        self.info["disk_type"] = data[1]
        self.info["write_protected"] = data[2] == 1
        self.info["synchronized"] = data[3] == 1
        self.info["cleaned"] = data[4] == 1
        try:
            self.info["creator"] = data[5:37].decode("UTF-8").strip()
        except UnicodeDecodeError:
            raise WozINFOFormatError_BadCreator("Creator is not valid UTF-8")
        self.info["disk_sides"] = data[37]
        self.info["boot_sector_format"] = data[38]
        self.info["optimal_bit_timing"] = data[39]
        self.info["compatible_hardware"] = from_uint16(data[40:42])
        self.info["required_ram"] = from_uint16(data[42:44])
        self.info["largest_track"] = from_uint16(data[44:46])

    def _load_tmap(self, data):
        self.tmap = list(data)

    def _load_trks(self, data):
        raise_if(len(data) < kBitsOffset, WozEOFError, sEOF)
        for trk in range(kQuarterTracks):
            i = trk * kTRKSize
            starting_block = from_uint16(data[i:i+2])
            raise_if(starting_block in (1,2), WozTRKSFormatError_BadStartingBlock, "TRKS TRK %d starting_block out of range (expected 3+ or 0, found %s)" % (trk, starting_block))
            block_count = from_uint16(data[i+2:i+4])
            count = from_uint32(data[i+4:i+8])
            if starting_block == 0:
                raise_if(block_count != 0, WozTRKSFormatError_BadBlockCount, "TRKS unused TRK %d block_count must be 0 (found %s)" % (trk, block_count))
                raise_if(count != 0, WozTRKSFormatError_BadBitCount, "TRKS unused TRK %d bit_count must be 0 (found %s)" % (trk, count))
                break
            raise_if(count > block_count * kBlockSize * 8, WozTRKSFormatError_BadBitCount, "TRKS TRK %d bit_count %s does not fit in %s blocks" % (trk, count, block_count))
            bits_index_into_data = kBitsOffset + (starting_block-kFirstTrackBlock)*kBlockSize
            raise_if(len(data) <= bits_index_into_data, WozTRKSFormatError_BadStartingBlock, sEOF)
            raw_bytes = data[bits_index_into_data : bits_index_into_data + block_count*kBlockSize]
            raise_if(len(raw_bytes) != block_count*kBlockSize, WozTRKSFormatError_BadBlockCount, sEOF)
            self.tracks.append(Track(raw_bytes, count))

    def _load_writ(self, data):
        i = 0
        while i < len(data):
            raise_if(len(data) - i < kWRITHeaderSize, WozWRITFormatError, sEOF)
            track, command_count, flags = data[i], data[i+1], data[i+2]
            crc = from_uint32(data[i+4:i+8])
            i += kWRITHeaderSize
            commands = []
            for c in range(command_count):
                raise_if(len(data) - i < kWRITCommandSize, WozWRITFormatError, sEOF)
                commands.append(WritCommand(from_uint32(data[i:i+4]),
                                            from_uint32(data[i+4:i+8]),
                                            data[i+8], data[i+9], data[i+10]))
                i += kWRITCommandSize
            self.writ.append(WritEntry(track, flags, crc, commands))

    def seek(self, track_num):
        """returns Track object for the given track, or None if the
        track is not part of this disk image. track_num can be 0..39.75
        in 0.25 increments (0, 0.25, 0.5, 0.75, 1, &c.)"""
        trk_id = self.tmap[int(track_num * 4)]
        if trk_id == 0xFF:
            return None
        return self.tracks[trk_id]

#---------- command line interface ----------

def sector_format_for_path(path):
    """.po images are in ProDOS order, anything else is assumed to be DOS 3.3 order"""
    if path.lower().endswith(".po"):
        return kProDOS
    return kDOS33

def read_dsk(filename):
    try:
        with open(filename, "rb") as f:
            dsk = f.read(kDskImageSize + 1)
    except OSError as e:
        raise DskInputError("could not open %s for reading (%s)" % (filename, e.strerror)) from e
    raise_if(len(dsk) != kDskImageSize, DskInputError,
             "file %s does not appear to be a 16-sector 5.25\" disk image" % filename)
    return dsk

def write_woz(filename, output_as_bytes):
    tmpfile = filename + ".ardry"
    try:
        with open(tmpfile, "wb") as tmp:
            tmp.write(output_as_bytes)
        os.replace(tmpfile, filename)
    except OSError as e:
        if os.path.exists(tmpfile):
            os.remove(tmpfile)
        raise DskOutputError("could not write %s (%s)" % (filename, e.strerror)) from e

def parse_args(args):
    parser = argparse.ArgumentParser(prog=__progname__,
                                     description="""Convert a 16-sector 5.25-inch Apple II disk image (.dsk, .do, .po) into a writeable .woz (WOZ2) disk image.""",
                                     epilog="""Tips:

 - Input files ending in .po are read in ProDOS sector order, everything
   else in DOS 3.3 sector order. Use --format to override.
 - The sector order of the image file is not necessarily the format of
   the disk inside it.""",
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("-v", "--version", action="version", version=__displayname__)
    parser.add_argument("-f", "--format", choices=tSectorFormats,
                        help="sector order of the input file (default: guess from file extension)")
    parser.add_argument("-c", "--creator", type=str, default=tDefaultCreator,
                        help="creator stored in the INFO chunk, 32 bytes max (default: %(default)s)")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="only print errors")
    parser.add_argument("input", help="16-sector disk image")
    parser.add_argument("output", help=".woz disk image (overwritten)")
    return parser.parse_args(args)

def main(args=None):
    args = parse_args(sys.argv[1:] if args is None else args)
    loggerclass = args.quiet and QuietLogger or DefaultLogger
    logger = loggerclass()
    sector_format = args.format or sector_format_for_path(args.input)
    try:
        dsk = read_dsk(args.input)
        output_as_bytes = bytes(WozWriter(dsk, sector_format, args.creator, loggerclass))
        # as a final sanity check, load and parse the output we just created
        # to help ensure we never create invalid .woz files
        try:
            WozImage(io.BytesIO(output_as_bytes))
        except WozError as e:
            raise DskInternalError("refusing to write an invalid file (%s: %s)" % (e.__class__.__name__, e)) from e
        write_woz(args.output, output_as_bytes)
    except DskInputError as e:
        logger.error("ERROR: {X}", X=e)
        return kExitInput
    except MemoryError:
        logger.error("ERROR: memory allocation failed")
        return kExitMemory
    except DskOutputError as e:
        logger.error("ERROR: {X}", X=e)
        return kExitOutput
    except DskInternalError as e:
        logger.error("DskInternalError: {X} (this is the developer's fault)", X=e)
        return kExitInternal
    logger.info("Wrote {X}", X=args.output)
    return kExitOK

if __name__ == "__main__":
    sys.exit(main())
