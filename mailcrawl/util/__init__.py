""" Non-server-specific utility modules. These shouldn't depend on any code
    from the mailcrawl module tree!

    Don't add new code here! Find the relevant submodule, or use misc.py if
    there's really no other place.
"""
