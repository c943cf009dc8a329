import glob
from setuptools import setup, find_packages


setup(
    name="mailcrawl",
    version="0.4.0",
    packages=find_packages(exclude=['tests', 'tests.*']),

    install_requires=[
        'gevent',
        'SQLAlchemy>=1.4',
        'structlog',
        'colorlog',
        'PyYAML',
        'requests',
        'IMAPClient',
        'flanker',
        'Flask',
        'click',
    ],
    extras_require={
        'test': ['pytest', 'mock'],
        'mysql': ['mysqlclient'],
    },

    include_package_data=True,
    data_files=[("mailcrawl-test-config", glob.glob("etc/*test*"))],

    scripts=['bin/mailcrawl-start',
             'bin/mailcrawl-watchdog',
             'bin/mailcrawl-sync',
             'bin/mailcrawl-account',
             'bin/create-db',
             ],

    zip_safe=False,
    description="Mailbox synchronization engine: seeds, forward-crawls and "
                "backfills remote mailboxes into a local message store",
    license="AGPLv3",
    keywords="imap gmail sync",
)
