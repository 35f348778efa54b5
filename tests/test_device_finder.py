"""Unit tests for device discovery (serial ports + raw USB)."""
import unittest
from unittest.mock import MagicMock, patch

import usb.core

from plterm.device.finder import (
    DEFAULT_VENDOR_ID,
    DeviceNotFoundError,
    EnumerationError,
    find_tty_devices,
    find_usb_device,
    find_usb_devices,
    scan_devices,
    usb_identity,
)
from plterm.models import Device


def make_port(device, name, description="n/a", vid=None, pid=None, serial_number=None):
    port = MagicMock()
    port.device = device
    port.name = name
    port.description = description
    port.vid = vid
    port.pid = pid
    port.serial_number = serial_number
    return port


def make_usb(pid, serial=None, product=None, kernel_driver=False, bus=1, address=2):
    dev = MagicMock()
    dev.idProduct = pid
    dev.bus = bus
    dev.address = address
    dev.iSerialNumber = 3 if serial else 0
    dev.iProduct = 2 if product else 0
    dev.is_kernel_driver_active.return_value = kernel_driver
    dev._strings = {3: serial, 2: product}
    return dev


def fake_get_string(dev, index):
    return dev._strings[index]


class TestUsbIdentity(unittest.TestCase):

    def test_format(self):
        self.assertEqual(usb_identity(0x2303, "ABC123"), "USB-2303-ABC123")

    def test_missing_serial(self):
        self.assertEqual(usb_identity(0x23A3, None), "USB-23A3-Unknown")

    def test_missing_serial_with_location(self):
        self.assertEqual(usb_identity(0x2303, None, "3.7"), "USB-2303-Unknown-3.7")

    def test_location_ignored_with_serial(self):
        self.assertEqual(usb_identity(0x2303, "ABC123", "3.7"), "USB-2303-ABC123")

    def test_default_vendor_is_prolific(self):
        self.assertEqual(DEFAULT_VENDOR_ID, 0x067B)


class TestFindTtyDevices(unittest.TestCase):
    """Tests for the character device source."""

    @patch('plterm.device.finder.core.list_ports.comports')
    def test_converts_ports(self, mock_comports):
        mock_comports.return_value = [
            make_port("/dev/ttyUSB0", "ttyUSB0", "USB-Serial Controller",
                      vid=0x067B, pid=0x2303, serial_number="SN1"),
            make_port("/dev/ttyS0", "ttyS0"),
        ]

        devices = find_tty_devices()

        self.assertEqual([d.identity for d in devices], ["/dev/ttyUSB0", "/dev/ttyS0"])
        self.assertEqual(devices[0].path, "/dev/ttyUSB0")
        self.assertEqual(devices[0].name, "ttyUSB0")
        self.assertTrue(devices[0].is_prolific)
        self.assertFalse(devices[1].is_prolific)
        self.assertFalse(devices[0].is_raw_usb)

    @patch('plterm.device.finder.core.list_ports.comports')
    def test_prolific_name_hint(self, mock_comports):
        """macOS names the Prolific driver's port 'usbserial-XXXX'."""
        mock_comports.return_value = [
            make_port("/dev/cu.usbserial-1410", "cu.usbserial-1410"),
        ]

        devices = find_tty_devices()
        self.assertTrue(devices[0].is_prolific)

    @patch('plterm.device.finder.core.list_ports.comports')
    def test_name_falls_back_to_path(self, mock_comports):
        mock_comports.return_value = [make_port("COM3", None)]

        self.assertEqual(find_tty_devices()[0].name, "COM3")

    @patch('plterm.device.finder.core.list_ports.comports')
    def test_failure_raises_enumeration_error(self, mock_comports):
        mock_comports.side_effect = OSError("sysfs unavailable")

        with self.assertRaises(EnumerationError):
            find_tty_devices()


@patch('plterm.device.finder.core.usb.util.get_string', side_effect=fake_get_string)
@patch('plterm.device.finder.core.usb.core.find')
class TestFindUsbDevices(unittest.TestCase):
    """Tests for the raw USB source."""

    def test_lists_unbound_devices(self, mock_find, _):
        mock_find.return_value = [make_usb(0x2303, "SN9", "USB-Serial Controller D")]

        devices = find_usb_devices()

        mock_find.assert_called_once_with(find_all=True, idVendor=0x067B)
        self.assertEqual(len(devices), 1)
        device = devices[0]
        self.assertEqual(device.identity, "USB-2303-SN9")
        self.assertEqual(device.name, "USB: USB-Serial Controller D (PID: 2303)")
        self.assertIsNone(device.path)
        self.assertTrue(device.is_raw_usb)
        self.assertTrue(device.is_prolific)

    def test_defaults_for_missing_strings(self, mock_find, _):
        mock_find.return_value = [make_usb(0x23A3)]

        device = find_usb_devices()[0]

        self.assertEqual(device.identity, "USB-23A3-Unknown-1.2")
        self.assertEqual(device.name, "USB: Prolific USB Device (PID: 23A3)")

    def test_skips_kernel_bound_devices(self, mock_find, _):
        mock_find.return_value = [make_usb(0x2303, "SN1", kernel_driver=True)]

        self.assertEqual(find_usb_devices(), [])

    def test_kernel_driver_query_unsupported(self, mock_find, _):
        dev = make_usb(0x2303, "SN1")
        dev.is_kernel_driver_active.side_effect = NotImplementedError()
        mock_find.return_value = [dev]

        self.assertEqual(len(find_usb_devices()), 1)

    def test_skips_devices_with_port(self, mock_find, _):
        """A device already exposed as a tty is not listed twice."""
        mock_find.return_value = [make_usb(0x2303, "SN1"), make_usb(0x2303, "SN2")]
        tty = Device(identity="/dev/cu.usbserial-1", name="cu.usbserial-1",
                     path="/dev/cu.usbserial-1", vid=0x067B, pid=0x2303,
                     serial_number="SN1")

        devices = find_usb_devices(exclude=[tty])

        self.assertEqual([d.identity for d in devices], ["USB-2303-SN2"])

    def test_custom_vendor(self, mock_find, _):
        mock_find.return_value = []

        find_usb_devices(0x1A86)

        mock_find.assert_called_once_with(find_all=True, idVendor=0x1A86)

    def test_no_backend(self, mock_find, _):
        mock_find.side_effect = usb.core.NoBackendError("No backend available")

        with self.assertRaises(EnumerationError):
            find_usb_devices()

    def test_unreadable_strings(self, mock_find, mock_get_string):
        mock_get_string.side_effect = usb.core.USBError("Access denied")
        mock_find.return_value = [make_usb(0x2303, "SN1", "Product")]

        device = find_usb_devices()[0]

        self.assertEqual(device.identity, "USB-2303-Unknown-1.2")


class TestScanDevices(unittest.TestCase):
    """Tests for the combined scan."""

    @patch('plterm.device.finder.core.usb.util.get_string', side_effect=fake_get_string)
    @patch('plterm.device.finder.core.usb.core.find')
    @patch('plterm.device.finder.core.list_ports.comports')
    def test_ports_first_then_usb(self, mock_comports, mock_find, _):
        mock_comports.return_value = [make_port("/dev/ttyUSB0", "ttyUSB0")]
        mock_find.return_value = [make_usb(0x2303, "SN1")]

        devices = scan_devices()

        self.assertEqual([d.identity for d in devices], ["/dev/ttyUSB0", "USB-2303-SN1"])

    @patch('plterm.device.finder.core.usb.core.find')
    @patch('plterm.device.finder.core.list_ports.comports')
    def test_usb_failure_keeps_ports(self, mock_comports, mock_find):
        mock_comports.return_value = [make_port("/dev/ttyUSB0", "ttyUSB0")]
        mock_find.side_effect = usb.core.NoBackendError("No backend available")

        with self.assertLogs('plterm.device.finder.core', level='WARNING'):
            devices = scan_devices()

        self.assertEqual([d.identity for d in devices], ["/dev/ttyUSB0"])

    @patch('plterm.device.finder.core.usb.util.get_string', side_effect=fake_get_string)
    @patch('plterm.device.finder.core.usb.core.find')
    @patch('plterm.device.finder.core.list_ports.comports')
    def test_port_failure_keeps_usb(self, mock_comports, mock_find, _):
        mock_comports.side_effect = OSError("boom")
        mock_find.return_value = [make_usb(0x2303, "SN1")]

        devices = scan_devices()

        self.assertEqual([d.identity for d in devices], ["USB-2303-SN1"])

    @patch('plterm.device.finder.core.usb.core.find')
    @patch('plterm.device.finder.core.list_ports.comports')
    def test_both_fail(self, mock_comports, mock_find):
        mock_comports.side_effect = OSError("boom")
        mock_find.side_effect = usb.core.USBError("boom")

        self.assertEqual(scan_devices(), [])

    @patch('plterm.device.finder.core.usb.util.get_string', side_effect=fake_get_string)
    @patch('plterm.device.finder.core.usb.core.find')
    @patch('plterm.device.finder.core.list_ports.comports')
    def test_identities_unique(self, mock_comports, mock_find, _):
        """Bound adapters appear once; unbound ones get distinct ids."""
        mock_comports.return_value = [
            make_port("/dev/ttyUSB0", "ttyUSB0", vid=0x067B, pid=0x2303, serial_number="A"),
            make_port("/dev/ttyS0", "ttyS0"),
        ]
        mock_find.return_value = [
            make_usb(0x2303, "A"),
            make_usb(0x2303, "B"),
            make_usb(0x23A3, "B"),
        ]

        identities = [d.identity for d in scan_devices()]

        self.assertEqual(len(identities), len(set(identities)))
        self.assertEqual(identities,
                         ["/dev/ttyUSB0", "/dev/ttyS0", "USB-2303-B", "USB-23A3-B"])


@patch('plterm.device.finder.core.usb.util.get_string', side_effect=fake_get_string)
@patch('plterm.device.finder.core.usb.core.find')
class TestFindUsbDevice(unittest.TestCase):
    """Tests for re-resolving a raw USB device by identity."""

    def test_found(self, mock_find, _):
        wanted = make_usb(0x2303, "SN2")
        mock_find.return_value = [make_usb(0x2303, "SN1"), wanted]

        self.assertIs(find_usb_device("USB-2303-SN2"), wanted)

    def test_serialless_adapters_kept_apart(self, mock_find, _):
        """Two adapters with the same PID and no serial resolve separately."""
        first = make_usb(0x2303, address=5)
        second = make_usb(0x2303, address=6)
        mock_find.return_value = [first, second]

        identities = [d.identity for d in find_usb_devices()]

        self.assertEqual(identities, ["USB-2303-Unknown-1.5", "USB-2303-Unknown-1.6"])
        self.assertIs(find_usb_device("USB-2303-Unknown-1.6"), second)

    def test_gone(self, mock_find, _):
        mock_find.return_value = [make_usb(0x2303, "SN1")]

        with self.assertRaises(DeviceNotFoundError):
            find_usb_device("USB-2303-SN2")

    def test_enumeration_failure(self, mock_find, _):
        mock_find.side_effect = usb.core.NoBackendError("No backend available")

        with self.assertRaises(DeviceNotFoundError):
            find_usb_device("USB-2303-SN2")


if __name__ == '__main__':
    unittest.main()
